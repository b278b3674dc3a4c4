import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from wonderland.core import config
from wonderland.database import Base, engine, ensure_enrollment_schema
from wonderland.models import class_offering, payment, selection, user  # noqa: F401
from wonderland.routes import auth_routes, class_routes, enrollment_routes, user_routes

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


configure_logging()
config.validate_runtime_config()

app = FastAPI(title='Summer Wonderland API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_enrollment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Summer Wonderland is running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(user_routes.router, prefix='/users')
app.include_router(class_routes.router, prefix='/classes')
app.include_router(enrollment_routes.router, prefix='/enrollment')


if __name__ == '__main__':
    import uvicorn

    uvicorn.run('wonderland.main:app', host='0.0.0.0', port=int(os.getenv('PORT', '5000')))
