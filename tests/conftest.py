import os

# Cheap hashing and a fixed secret; must be set before alumni_portal is imported.
os.environ.setdefault("PASSWORD_ITERATIONS", "1000")
os.environ.setdefault("AUTH_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_ENV", "test")
