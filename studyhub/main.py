import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from studyhub.core.config import (
    APP_TITLE,
    APP_VERSION,
    APP_DESCRIPTION,
    CORS_ORIGINS,
    CORS_CREDENTIALS,
    CORS_METHODS,
    CORS_HEADERS,
    LOG_LEVEL,
    RESOURCES_BASE_URL,
    RESOURCES_DIR,
)
from studyhub.api.routes import (
    flashcards,
    rooms,
    websocket,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title=APP_TITLE,
    version=APP_VERSION,
    description=APP_DESCRIPTION
)

# CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=CORS_CREDENTIALS,
    allow_methods=CORS_METHODS,
    allow_headers=CORS_HEADERS,
)

# Include routers
app.include_router(flashcards.router)
app.include_router(rooms.router)
app.include_router(websocket.router)

# Uploaded room resources are served from disk
os.makedirs(RESOURCES_DIR, exist_ok=True)
app.mount(RESOURCES_BASE_URL, StaticFiles(directory=RESOURCES_DIR), name="files")


@app.get("/")
async def root():
    return {
        "success": True,
        "message": "StudyHub API is running!",
        "version": APP_VERSION,
        "endpoints": "/docs for API documentation"
    }

# Local development:
# uvicorn studyhub.main:app --host 0.0.0.0 --port 8000 --reload
