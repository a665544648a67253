import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from zenzone import database
from zenzone.core import config
from zenzone.core.errors import ValidationFailed, error_code
from zenzone.realtime import socket_routes
from zenzone.routes import (
    analytics_routes,
    appointment_routes,
    auth_routes,
    message_routes,
    moderation_routes,
    sentiment_routes,
    upload_routes,
)

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title='ZenZone Messaging API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        database.init_db()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={'error': exc.detail, 'code': error_code(exc)},
        headers=getattr(exc, 'headers', None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = '.'.join(str(part) for part in error.get('loc', ()) if part != 'body')
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get('msg')))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={'error': '; '.join(messages) or 'Invalid request.', 'code': ValidationFailed.code},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={'error': 'Internal Server Error', 'code': 'ServerError'},
    )


@app.get('/api/health')
def health():
    return {
        'status': 'ok',
        'env': config.APP_ENV,
        'realtimeRooms': len(socket_routes.broker.topics()),
    }


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(appointment_routes.router, prefix='/api/appointments')
app.include_router(message_routes.router, prefix='/api/messages')
app.include_router(upload_routes.router, prefix='/api/upload')
app.include_router(sentiment_routes.router, prefix='/api/sentiment')
app.include_router(moderation_routes.router, prefix='/api/moderation')
app.include_router(analytics_routes.router, prefix='/api/analytics')
app.include_router(socket_routes.router)

app.mount(upload_routes.UPLOAD_URL_PREFIX, StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name='uploads')
