"""
HTTP surface of the alumni portal.

Nothing is built at import time. Serve with
``uvicorn alumni_portal.main:create_app --factory``.
"""

import traceback
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from alumni_portal import settings
from alumni_portal.database import Database, get_db
from alumni_portal.errors import Forbidden, Internal, NotFound, RateLimited, ServiceError, Unauthorized, ValidationFailed
from alumni_portal.models import ROLE_ALUMNI, ROLE_STUDENT, User
from alumni_portal.observability import get_logger, setup_logging
from alumni_portal.schemas import (
    AdminRegister,
    ClaimDecision,
    ClaimRequest,
    LoginRequest,
    MessageCreate,
    NameUpdate,
    ProfileUpdate,
    RequestResponse,
    StudentProfileUpdate,
    StudentRegister,
)
from alumni_portal.services import admin_stats, connections, identity, messaging, profiles
from alumni_portal.services.actors import (
    Actor,
    Alumni,
    Student,
    require_admin,
    require_alumni,
    require_student,
    resolve_actor,
)
from alumni_portal.services.audit import list_audit_logs, write_audit_log
from alumni_portal.services.bootstrap import ensure_default_admin
from alumni_portal.services.csv_import import import_alumni_csv
from alumni_portal.services.security import (
    AUTH_SECRET,
    DEFAULT_AUTH_SECRET,
    InMemoryRateLimiter,
    issue_token,
    read_token,
    token_matches,
)

logger = get_logger(__name__)

DEFAULT_ADMIN_PASSWORD = "admin12345"


def enforce_production_security():
    if not settings.is_production():
        return
    insecure = []
    if AUTH_SECRET == DEFAULT_AUTH_SECRET:
        insecure.append("AUTH_SECRET must be set")
    if settings.ADMIN_PASSWORD == DEFAULT_ADMIN_PASSWORD:
        insecure.append("ADMIN_PASSWORD must be changed from default")
    if settings.ALLOWED_HOSTS == ["*"]:
        insecure.append("ALLOWED_HOSTS must be explicit (not *)")
    if settings.DEBUG:
        insecure.append("DEBUG must be false")
    if insecure:
        raise RuntimeError("Production security configuration error: " + "; ".join(insecure))


def ok(data=None, message: str | None = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def _error_response(exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


def install_error_handlers(app: FastAPI):
    @app.exception_handler(ServiceError)
    async def _service_error(_request: Request, exc: ServiceError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(_request: Request, exc: RequestValidationError):
        details = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            details.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
        return _error_response(ValidationFailed("Invalid request payload.", details))

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.error("unhandled_exception", path=request.url.path, exc_info=exc)
        error = Internal("Internal server error.")
        if settings.DEBUG and not settings.is_production():
            error.details = traceback.format_exception(type(exc), exc, exc.__traceback__)
        return _error_response(error)


def _client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for", "")
    if settings.TRUST_PROXY_HEADERS and xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def check_rate_limit(request: Request, bucket: str, limit: int, period_seconds: int):
    key = f"{bucket}:{_client_ip(request)}"
    if not request.app.state.rate_limiter.allow(key, limit, period_seconds):
        raise RateLimited("Rate limit exceeded.")


def parse_page(value: str | None, default: int = 1) -> int:
    try:
        parsed = int(value or default)
    except (TypeError, ValueError):
        return default
    return max(1, parsed)


def parse_page_size(value: str | None, default: int, min_size: int = 1, max_size: int = 100) -> int:
    try:
        parsed = int(value or default)
    except (TypeError, ValueError):
        return default
    return min(max(parsed, min_size), max_size)


def current_user(request: Request, db: Session = Depends(get_db)) -> User:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Authentication required.")
    claims = read_token(token.strip())
    if not claims:
        raise Unauthorized("Invalid or expired token.")
    user = db.get(User, claims["sub"])
    if not user or not token_matches(claims, user.role, user.password_hash):
        raise Unauthorized("Invalid or expired token.")
    return user


def current_actor(user: User = Depends(current_user), db: Session = Depends(get_db)) -> Actor:
    return resolve_actor(db, user)


def _account_view(db: Session, user: User) -> dict:
    view = user.to_dict()
    if user.role == ROLE_ALUMNI and user.alumni_profile:
        view["profile"] = profiles.profile_view(user.alumni_profile, user)
    elif user.role == ROLE_STUDENT and user.student_profile:
        view["profile"] = identity.get_student_profile(db, Student(user_id=user.id))
    return view


auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])
alumni_router = APIRouter(prefix="/api/alumni", tags=["alumni"])
student_router = APIRouter(prefix="/api/student", tags=["student"])
messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


@auth_router.post("/register/student", status_code=201)
def register_student(payload: StudentRegister, request: Request, db: Session = Depends(get_db)):
    check_rate_limit(request, "register", limit=settings.LOGIN_RATE_LIMIT, period_seconds=60)
    user = identity.register_student(db, payload.model_dump())
    write_audit_log(db, Student(user_id=user.id), "register", "user", user.id)
    return ok({"user": user.to_dict(), "token": issue_token(user.id, user.role, user.password_hash)}, "Registration successful")


@auth_router.post("/register/admin", status_code=201)
def register_admin(payload: AdminRegister, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    user = identity.register_admin(db, actor, payload.model_dump())
    write_audit_log(db, actor, "register_admin", "user", user.id)
    return ok({"user": user.to_dict()}, "Administrator created")


@auth_router.post("/claim-profile")
def claim_profile(payload: ClaimRequest, request: Request, db: Session = Depends(get_db)):
    check_rate_limit(request, "claim", limit=settings.LOGIN_RATE_LIMIT, period_seconds=60)
    profile = profiles.claim(db, payload.email, payload.password)
    write_audit_log(db, None, "claim", "alumni_profile", profile.id)
    return ok({"profile_id": profile.id}, "Profile claimed successfully. Please wait for admin verification.")


@auth_router.post("/login")
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    check_rate_limit(request, "login", limit=settings.LOGIN_RATE_LIMIT, period_seconds=60)
    user = identity.authenticate(
        db,
        payload.email,
        payload.password,
        max_failures=settings.MAX_FAILED_LOGINS,
        lockout_seconds=settings.LOCKOUT_SECONDS,
    )
    if not user:
        write_audit_log(db, None, "login", "auth", "", "denied", {"email": payload.email.strip().lower()})
        raise Unauthorized("Invalid email or password.")
    actor = resolve_actor(db, user)
    write_audit_log(db, actor, "login", "auth", user.id)
    return ok({"user": _account_view(db, user), "token": issue_token(user.id, user.role, user.password_hash)}, "Login successful")


@auth_router.get("/profile")
def get_account(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return ok(_account_view(db, user))


@auth_router.put("/profile")
def update_account(payload: NameUpdate, user: User = Depends(current_user), db: Session = Depends(get_db)):
    updated = identity.update_name(db, user.id, payload.name)
    return ok(_account_view(db, updated), "Profile updated successfully")


@admin_router.post("/upload-csv")
async def upload_csv(
    file: UploadFile = File(...),
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
):
    require_admin(actor)
    filename = file.filename or "upload.csv"
    if not filename.lower().endswith(".csv"):
        raise ValidationFailed("Only CSV files are allowed.")
    content = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise ValidationFailed("File too large.", [f"Maximum upload size is {settings.MAX_UPLOAD_BYTES} bytes"])
    summary = import_alumni_csv(db, actor, filename, content)
    write_audit_log(
        db,
        actor,
        "csv_upload",
        "csv_upload",
        summary.upload_id,
        details={"new": summary.new_records, "updated": summary.updated_records, "skipped": summary.skipped_records},
    )
    return ok(summary.to_dict(), "CSV processed successfully")


@admin_router.get("/claims")
def pending_claims(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    require_admin(actor)
    return ok(profiles.list_pending_claims(db))


@admin_router.post("/claims/{alumni_id}")
def decide_claim(
    alumni_id: int, payload: ClaimDecision, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)
):
    action = payload.action.strip().lower()
    if action == "approve":
        profile = profiles.approve(db, actor, alumni_id)
    elif action == "reject":
        profile = profiles.reject(db, actor, alumni_id)
    else:
        raise ValidationFailed("Invalid action.", ["Action must be 'approve' or 'reject'"])
    write_audit_log(db, actor, f"claim_{action}", "alumni_profile", alumni_id)
    return ok(profiles.profile_view(profile, profile.user), f"Claim {action}d")


@admin_router.get("/stale-profiles")
def stale_profiles(request: Request, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    require_admin(actor)
    raw = request.query_params.get("daysOld") or request.query_params.get("days_old")
    try:
        days_old = int(raw) if raw else settings.STALE_PROFILE_DAYS
    except ValueError:
        raise ValidationFailed("Invalid threshold.", ["daysOld must be a non-negative number"]) from None
    rows = profiles.get_stale_profiles(db, days_old)
    return ok({"profiles": rows, "count": len(rows), "threshold_days": days_old})


@admin_router.get("/dashboard/stats")
def dashboard(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    return ok(admin_stats.dashboard_stats(db, actor))


@admin_router.get("/upload-history")
def upload_history(request: Request, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    page = parse_page(request.query_params.get("page"))
    limit = parse_page_size(request.query_params.get("limit"), default=20)
    return ok(admin_stats.upload_history(db, actor, page, limit))


@admin_router.get("/upload-statistics")
def upload_statistics(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    return ok(admin_stats.upload_statistics(db, actor))


@admin_router.get("/users")
def list_users(request: Request, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    require_admin(actor)
    page = parse_page(request.query_params.get("page"))
    limit = parse_page_size(request.query_params.get("limit"), default=20)
    users = identity.list_users(db, request.query_params.get("role") or None, page, limit)
    return ok([u.to_dict() for u in users])


@admin_router.delete("/users/{user_id}")
def delete_user(user_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    identity.delete_user(db, actor, user_id)
    write_audit_log(db, actor, "user_delete", "user", user_id)
    return ok(message="User deleted successfully")


@admin_router.delete("/requests/{request_id}")
def delete_request(request_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    connections.delete_request(db, actor, request_id)
    write_audit_log(db, actor, "request_delete", "interaction_request", request_id)
    return ok(message="Request deleted successfully")


@admin_router.get("/audit")
def audit_log(request: Request, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    require_admin(actor)
    page = parse_page(request.query_params.get("page"))
    limit = parse_page_size(request.query_params.get("limit"), default=50, max_size=200)
    return ok(list_audit_logs(db, page, limit, request.query_params.get("action") or None))


@alumni_router.get("/profile")
def alumni_profile(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    alumni = require_alumni(actor)
    return ok(profiles.get_profile_view(db, alumni.user_id))


@alumni_router.put("/profile")
def update_alumni_profile(payload: ProfileUpdate, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    alumni = require_alumni(actor)
    profile = profiles.update_profile(db, alumni, alumni.user_id, payload.model_dump(exclude_unset=True))
    write_audit_log(db, actor, "profile_update", "alumni_profile", profile.id)
    return ok(profiles.profile_view(profile, profile.user), "Profile updated successfully")


@alumni_router.get("/requests")
def alumni_requests(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    return ok(connections.requests_for_alumni(db, actor))


@alumni_router.put("/requests/{request_id}")
def respond_to_request(
    request_id: int, payload: RequestResponse, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)
):
    row = connections.respond(db, actor, request_id, payload.status)
    write_audit_log(db, actor, "request_respond", "interaction_request", row.id, details={"status": row.status})
    return ok(row.to_dict(), f"Request {row.status} successfully")


@alumni_router.get("/connections")
def alumni_connections(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    require_alumni(actor)
    return ok(connections.accepted_connections(db, actor))


@student_router.get("/profile")
def student_profile(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    return ok(identity.get_student_profile(db, actor))


@student_router.put("/profile")
def update_student_profile(
    payload: StudentProfileUpdate, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)
):
    return ok(identity.update_student_profile(db, actor, payload.model_dump(exclude_unset=True)), "Profile updated successfully")


@student_router.get("/directory")
def directory(request: Request, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    if isinstance(actor, Alumni):
        raise Forbidden("Only students and administrators can browse the directory.")
    rows = profiles.directory(db, actor, dict(request.query_params), default_limit=settings.DIRECTORY_PAGE_SIZE)
    return ok(rows)


@student_router.post("/request/{alumni_id}", status_code=201)
def send_request(alumni_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    row = connections.request_connection(db, actor, alumni_id)
    write_audit_log(db, actor, "request_create", "interaction_request", row.id, details={"alumni_id": alumni_id})
    return ok(row.to_dict(), "Request sent successfully")


@student_router.get("/requests")
def student_requests(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    return ok(connections.requests_for_student(db, actor))


@student_router.get("/connections")
def student_connections(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    require_student(actor)
    return ok(connections.accepted_connections(db, actor))


@messages_router.get("/conversations")
def conversations(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    return ok(messaging.list_conversations(db, actor))


@messages_router.get("/unread-count")
def unread(actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    return ok({"unread_count": messaging.unread_count(db, actor)})


@messages_router.get("/conversations/{other_id}")
def conversation(
    other_id: int, request: Request, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)
):
    page = parse_page(request.query_params.get("page"))
    page_size = parse_page_size(request.query_params.get("page_size"), default=settings.CONVERSATION_PAGE_SIZE)
    if request.query_params.get("mark_read", "true").lower() != "false":
        messaging.mark_conversation_read(db, actor, other_id)
    rows = messaging.get_conversation(db, actor, other_id, page, page_size)
    return ok([m.to_dict() for m in rows])


@messages_router.put("/conversations/{other_id}/read")
def read_conversation(other_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    count = messaging.mark_conversation_read(db, actor, other_id)
    return ok({"marked": count})


@messages_router.delete("/conversations/{other_id}")
def remove_conversation(other_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    count = messaging.delete_conversation(db, actor, other_id)
    return ok({"deleted": count}, "Conversation deleted successfully")


@messages_router.post("", status_code=201)
def send_message(payload: MessageCreate, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    row = messaging.send(db, actor, payload.receiver_id, payload.message)
    return ok(row.to_dict(), "Message sent successfully")


@messages_router.put("/{message_id}/read")
def read_message(message_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    row = messaging.mark_read(db, actor, message_id)
    return ok(row.to_dict())


@messages_router.delete("/{message_id}")
def remove_message(message_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    messaging.delete_message(db, actor, message_id)
    return ok(message="Message deleted successfully")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app_started", env=settings.APP_ENV)
    yield
    app.state.database.dispose()
    logger.info("app_stopped")


def create_app(database_url: str | None = None) -> FastAPI:
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    enforce_production_security()

    database = Database(database_url or settings.DATABASE_URL)
    database.create_all()
    db = database.session()
    try:
        ensure_default_admin(db, settings.ADMIN_NAME, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    finally:
        db.close()

    app = FastAPI(title="Alumni Portal", version="1.0.0", lifespan=lifespan)
    app.state.database = database
    app.state.rate_limiter = InMemoryRateLimiter()

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    if settings.ALLOWED_HOSTS != ["*"]:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)
    if settings.FORCE_HTTPS:
        app.add_middleware(HTTPSRedirectMiddleware)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Cache-Control"] = "no-store"
        if settings.FORCE_HTTPS:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    install_error_handlers(app)
    for router in (auth_router, admin_router, alumni_router, student_router, messages_router):
        app.include_router(router)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "DELETE"], include_in_schema=False)
    def unknown_route(path: str):
        raise NotFound(f"Route /api/{path} not found.")

    return app

