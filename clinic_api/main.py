import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinic_api.core import config
from clinic_api.core.errors import ClinicError
from clinic_api.database import Base, engine, ensure_appointment_schema
from clinic_api.models import appointment, user  # noqa: F401
from clinic_api.routes import appointment_routes, user_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

logger = logging.getLogger(__name__)

app = FastAPI(title='Clinic Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


def format_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return 'Validation error'

    first = errors[0]
    message = str(first.get('msg', 'Validation error')).removeprefix('Value error, ')
    fields = [str(part) for part in first.get('loc', ()) if part not in ('body', 'query', 'path')]
    if fields:
        return f'{".".join(fields)}: {message}'
    return message


@app.exception_handler(ClinicError)
async def handle_clinic_error(request: Request, exc: ClinicError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={'message': exc.message})


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={'message': exc.detail},
        headers=getattr(exc, 'headers', None),
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={'message': format_validation_error(exc)})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse(status_code=500, content={'message': 'Server error'})


@app.get('/')
def root():
    return {'status': 'Clinic Scheduling API Running'}


app.include_router(user_routes.router, prefix='/auth')
app.include_router(appointment_routes.router, prefix='/appointments')
