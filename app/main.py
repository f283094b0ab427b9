from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.features.users.routes import router as user_router
from app.features.organizations.routes import router as organization_router
from app.features.subscriptions.routes import router as subscription_router
from app.features.permissions.routes import router as permission_router
from app.features.leaves.routes import router as leave_router
from app.features.permissions.decisions import AccessDeniedError, AccessEngineError
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


API_VERSION = "0.1.0"

log = get_logger(__name__)
log.info("Starting field operations API %s", API_VERSION)
app = FastAPI(
    title="Field Operations Backend",
    description="Multi-tenant field sales API with plan- and role-based feature access",
    version=API_VERSION,
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
# Rate limits are keyed by bearer token
app.state.limiter = Limiter(key_func=get_authorization_header)


class LogTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        route = metric_name.removeprefix("api.app.features.")
        log.debug("timing %s %.4fs %s", route, timing, tags)


app.add_middleware(TimingMiddleware, client=LogTimings(), metric_namer=StarletteScopeToName("api", app))

if config.ENABLE_DOCS:
    log.warning("OpenAPI docs are publicly served")
if config.ALLOW_ORIGIN:
    log.warning("CORS enabled for %s", config.ALLOW_ORIGIN)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.ALLOW_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def flatten_validation_errors(exc: RequestValidationError) -> dict[str, str]:
    """Map each invalid field name to its first message."""
    errors: dict[str, str] = {}
    for error in exc.errors():
        location = error.get("loc") or ("root",)
        field = str(location[-1])
        if field == "__root__":
            field = "root"
        errors.setdefault(field, error.get("msg", "Invalid value"))
    return errors


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = flatten_validation_errors(exc)
    log.info("Rejected request body: %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(AccessDeniedError)
async def access_denied_handler(_request: Request, exc: AccessDeniedError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.decision.to_dict()))


@app.exception_handler(AccessEngineError)
async def access_engine_error_handler(request: Request, exc: AccessEngineError):
    log.error("Access engine failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=exc.decision.status_code,
        content=jsonable_encoder(exc.decision.to_dict())
    )


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "Too many requests, slow down"}, status_code=429)


@app.on_event("startup")
async def create_schema():
    await init_db()
    log.info("Database schema ready")


@app.get("/")
async def root():
    """Service banner listing the mounted feature areas."""
    return {
        "message": "Field Operations Backend API",
        "version": API_VERSION,
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require an Appwrite JWT as Bearer token in the Authorization header",
            "channel_header": "X-Client-Channel: web | mobile"
        },
        "features": {
            "permissions": "Feature registry, custom roles and plan AND role access checks",
            "subscriptions": "Basic, Standard, Premium and custom subscription plans",
            "organizations": "Tenants with subscription windows",
            "users": "Employees with a multi-supervisor reporting hierarchy",
            "leaves": "Leave requests with hierarchy-scoped visibility and approval"
        }
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}


for router, prefix in (
    (user_router, "/users"),
    (organization_router, "/organizations"),
    (subscription_router, "/subscriptions"),
    (permission_router, "/permissions"),
    (leave_router, "/leaves"),
):
    app.include_router(router, prefix=prefix, tags=[prefix.strip("/")])
