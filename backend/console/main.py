import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .domain.ports.grants import AnnotationGrantResolver, AnnotationSource
from .errors import AppError, error_payload, http_error
from .services.access_service import AccessService

logger = logging.getLogger("console")


def _resolve_log_level(value: str) -> int:
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(settings: Settings) -> None:
    log_level = _resolve_log_level(settings.log_level)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(log_level)


def build_access_service(
    settings: Settings,
    *,
    project_annotations: AnnotationSource | None = None,
    org_annotations: AnnotationSource | None = None,
) -> AccessService:
    """Wire the parent-grant resolvers enabled by ``settings``."""
    project_grants = None
    if settings.project_grant_cascade and project_annotations is not None:
        project_grants = AnnotationGrantResolver(project_annotations)
    org_grants = None
    if settings.org_grant_cascade and org_annotations is not None:
        org_grants = AnnotationGrantResolver(org_annotations)
    return AccessService(project_grants=project_grants, org_grants=org_grants)


def _log_error(request: Request, status_code: int, code: str, message: str, exc: Exception | None = None) -> None:
    request_id = request.headers.get("x-request-id")
    log_message = f"[{code}] path={request.url.path} request_id={request_id or 'n/a'} message={message}"
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(log_message, exc_info=exc)
    else:
        logger.warning(log_message)


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    _log_error(request, exc.status_code, exc.code, exc.message, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.code, exc.message, exc.details),
    )


async def handle_http_exception(
    request: Request, exc: HTTPException | StarletteHTTPException
) -> JSONResponse:
    code, safe_message = http_error(exc.status_code)
    detail_message = exc.detail if isinstance(exc.detail, str) else ""
    _log_error(request, exc.status_code, code, detail_message.strip() or safe_message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code, safe_message),
    )


def create_app(
    settings: Settings | None = None,
    *,
    project_annotations: AnnotationSource | None = None,
    org_annotations: AnnotationSource | None = None,
) -> FastAPI:
    """Create the API application.

    Resource routers are mounted by the deployment; this factory wires the
    authorization service, error handling and CORS.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    if settings.debug:
        logger.warning("DEBUG=true, do not use in production")

    app = FastAPI(title=settings.app_name, debug=settings.debug)
    app.state.settings = settings
    app.state.access_service = build_access_service(
        settings,
        project_annotations=project_annotations,
        org_annotations=org_annotations,
    )

    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
            allow_headers=["*"],
        )

    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})

    return app
