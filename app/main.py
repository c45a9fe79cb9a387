from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.api import auth, health, todos
from app.core.config import get_settings
from app.core.database import init_db
from app.core.errors import register_exception_handlers
from app.core.logger import setup_logging


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info(f"{settings.APP_NAME} started (env={settings.APP_ENV}, storage={settings.STORAGE_BACKEND})")
    yield


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)


# wildcard origins cannot be combined with allow_credentials=True
allow_origins = settings.cors_origins or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials="*" not in allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(todos.router)
