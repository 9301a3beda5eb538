import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from brandguard.api.v1.admin import router as admin_router
from brandguard.api.v1.analysis import router as analysis_router
from brandguard.api.v1.drive import router as drive_router
from brandguard.api.v1.files import router as files_router
from brandguard.api.v1.google_oauth import router as google_oauth_router
from brandguard.api.v1.uploads import router as uploads_router
from brandguard.api.v1.users import router as users_router
from brandguard.core.observability import generate_correlation_id, reset_correlation_id, set_correlation_id
from brandguard.db.database import init_db


DEV_CORS_ORIGINS = [
    'http://localhost:3000',
    'http://127.0.0.1:3000',
    'http://localhost:5173',
    'http://127.0.0.1:5173',
]


def _parse_origins(raw_origins: str | None) -> list[str]:
    if not raw_origins:
        return []
    return [origin.strip() for origin in raw_origins.split(',') if origin.strip()]


def _resolve_cors_origins() -> list[str]:
    app_env = os.getenv('APP_ENV', 'dev').strip().lower()
    env_origins = _parse_origins(os.getenv('CORS_ALLOW_ORIGINS'))

    if app_env == 'prod':
        # Cookies ride on OAuth redirects, so production needs an explicit allowlist.
        if not env_origins:
            raise RuntimeError('CORS_ALLOW_ORIGINS must be set in production')
        if '*' in env_origins:
            raise RuntimeError('Wildcard CORS origin is not allowed in production')
        return env_origins

    if env_origins:
        return env_origins
    return DEV_CORS_ORIGINS


async def http_exception_handler(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    body = exc.detail if isinstance(exc.detail, dict) else {'error': str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, 'headers', None))


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        init_db()
        yield

    app = FastAPI(title='Brand Guard API', version='0.1.0', lifespan=lifespan)
    logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO'))
    cors_origins = _resolve_cors_origins()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=bool(cors_origins),
        allow_methods=['*'],
        allow_headers=['*'],
    )
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    @app.middleware('http')
    async def correlation_middleware(request: Request, call_next) -> Response:
        correlation_id = request.headers.get('x-correlation-id') or request.headers.get('x-request-id') or generate_correlation_id()
        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers['x-correlation-id'] = correlation_id
        return response

    @app.get('/health', tags=['Health'])
    def health() -> dict[str, str]:
        return {'status': 'ok'}

    app.include_router(uploads_router)
    app.include_router(files_router)
    app.include_router(analysis_router)
    app.include_router(users_router)
    app.include_router(admin_router)
    app.include_router(drive_router)
    app.include_router(google_oauth_router)

    return app
