import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models  # noqa: F401  registers tables on Base.metadata
from .ai import ChatService
from .config import settings
from .database import Base, engine
from .errors import ApiError, PartialFailure
from .limits import GENERAL_LIMIT_MESSAGE, limiter
from .routes import auth as auth_routes
from .routes import chat as chat_routes
from .routes import dashboard as dashboard_routes
from .routes import data as data_routes
from .routes import users as users_routes
from .schemas import ValidationResult

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.client_url.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    app.state.chat_service = ChatService.from_settings(settings)
    logger.info("%s started", settings.app_name)


def _error_body(error: str, details=None) -> dict:
    body = {"success": False, "error": error}
    if details:
        body["details"] = jsonable_encoder(details)
    return body


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if isinstance(exc, PartialFailure):
        return JSONResponse(
            {"success": True, "data": jsonable_encoder(exc.data)},
            status_code=exc.status_code,
        )
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.error)
    return JSONResponse(_error_body(exc.error, exc.details), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        ValidationResult(
            loc=".".join(str(part) for part in error.get("loc", ())),
            msg=error.get("msg", ""),
        )
        for error in exc.errors()
    ]
    return JSONResponse(_error_body("Validation failed", details), status_code=400)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    message = getattr(exc.limit, "error_message", None) or GENERAL_LIMIT_MESSAGE
    logger.warning("Rate limit hit on %s %s: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(_error_body(message), status_code=429)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        _error_body(str(exc.detail)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled application error", exc_info=exc)
    return JSONResponse(_error_body("Internal server error"), status_code=500)


@app.get("/api/health")
def health():
    return {"status": "ok", "service": settings.app_name}


app.include_router(auth_routes.router)
app.include_router(data_routes.router)
app.include_router(users_routes.router)
app.include_router(dashboard_routes.router)
app.include_router(chat_routes.router)
