import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flashcard_svc.config import get_settings
from flashcard_svc.models.base import init_db
from flashcard_svc.routers import flashcards_router, stripe_router, users_router

settings = get_settings()

logging.basicConfig(level=settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(get_settings())
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(stripe_router.router, prefix="/api/stripe")
app.include_router(flashcards_router.router, prefix="/api/flashcards")
app.include_router(users_router.router, prefix="/api/users")
