"""
Credentials, bearer tokens and request throttling.

Tokens are ``<base64 claims>.<hex hmac>``. Besides the usual subject, role and
expiry, each token carries a fingerprint of the credential it was issued
against, so a password change invalidates every token minted before it.
"""

import base64
import hashlib
import hmac
import json
import os
import secrets
import threading
import time
from collections import deque

AUTH_SECRET = os.getenv("AUTH_SECRET", "alumni-dev-secret-change-me")
DEFAULT_AUTH_SECRET = "alumni-dev-secret-change-me"
PASSWORD_ITERATIONS = int(os.getenv("PASSWORD_ITERATIONS", "600000"))
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", str(60 * 60 * 24 * 7)))
MAX_TOKEN_BYTES = 4096
MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))
MAX_PASSWORD_LENGTH = 120
TOKEN_ROLES = {"student", "alumni", "admin"}
HASH_ALGORITHM = "pbkdf2_sha256"

# "!" is outside the encoder's alphabet, so no real hash can equal this value.
UNUSABLE_PASSWORD = "!unusable"


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def hash_password(password: str, salt: bytes | None = None) -> str:
    salt = salt if salt is not None else secrets.token_bytes(16)
    digest = _derive(password, salt, PASSWORD_ITERATIONS)
    parts = (HASH_ALGORITHM, str(PASSWORD_ITERATIONS), base64.b64encode(salt).decode(), base64.b64encode(digest).decode())
    return "$".join(parts)


def is_usable_password(encoded_hash: str) -> bool:
    return bool(encoded_hash) and not encoded_hash.startswith("!")


def verify_password(password: str, encoded_hash: str) -> bool:
    if not is_usable_password(encoded_hash):
        return False
    try:
        algorithm, iterations, salt_b64, digest_b64 = encoded_hash.split("$")
        if algorithm != HASH_ALGORITHM:
            return False
        expected = base64.b64decode(digest_b64)
        trial = _derive(password, base64.b64decode(salt_b64), int(iterations))
    except (ValueError, TypeError):
        return False
    return hmac.compare_digest(trial, expected)


def validate_password_policy(password: str) -> tuple[bool, str]:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if len(password) > MAX_PASSWORD_LENGTH:
        return False, "Password is too long"
    return True, ""


def _mac(message: str) -> str:
    return hmac.new(AUTH_SECRET.encode(), message.encode(), hashlib.sha256).hexdigest()


def credential_fingerprint(password_hash: str) -> str:
    return _mac(f"credential:{password_hash}")[:24]


def issue_token(user_id: int, role: str, password_hash: str) -> str:
    now = int(time.time())
    claims = {
        "sub": user_id,
        "role": role,
        "sid": secrets.token_urlsafe(16),
        "cv": credential_fingerprint(password_hash),
        "iat": now,
        "exp": now + TOKEN_TTL_SECONDS,
    }
    body = base64.urlsafe_b64encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode()).decode()
    return f"{body}.{_mac(body)}"


def read_token(token: str) -> dict | None:
    """Return the claims of a well-formed, correctly signed, unexpired token."""
    if not token or len(token.encode("utf-8")) > MAX_TOKEN_BYTES:
        return None
    body, _, signature = token.partition(".")
    if not signature or not hmac.compare_digest(signature, _mac(body)):
        return None
    try:
        claims = json.loads(base64.urlsafe_b64decode(body.encode()).decode())
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict):
        return None
    if claims.get("role") not in TOKEN_ROLES or not isinstance(claims.get("sub"), int):
        return None
    if not isinstance(claims.get("sid"), str) or len(claims["sid"]) < 12:
        return None
    if not isinstance(claims.get("cv"), str):
        return None
    if not isinstance(claims.get("exp"), int) or claims["exp"] < int(time.time()):
        return None
    return claims


def token_matches(claims: dict, role: str, password_hash: str) -> bool:
    """True while the account still has the role and credential the token was issued for."""
    if claims["role"] != role or not is_usable_password(password_hash):
        return False
    return hmac.compare_digest(claims["cv"], credential_fingerprint(password_hash))


class InMemoryRateLimiter:
    """Sliding-window hit counter per key, local to one process."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()

    def allow(self, key: str, limit: int, period_seconds: int) -> bool:
        with self._lock:
            now = self._clock()
            hits = self._hits.setdefault(key, deque())
            horizon = now - period_seconds
            while hits and hits[0] <= horizon:
                hits.popleft()
            if len(hits) >= limit:
                return False
            hits.append(now)
            return True
