import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# MongoDB configuration
MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB_NAME = os.getenv("MONGODB_DB_NAME", "studyhub")

# Redis configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Realtime document store: "redis" or "memory" (single process, local development)
DOCUMENT_STORE_BACKEND = os.getenv("DOCUMENT_STORE_BACKEND", "redis").lower()

# Gemini configuration
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GENERATION_CONTEXT_LIMIT = int(os.getenv("GENERATION_CONTEXT_LIMIT", "4000"))

# Pomodoro configuration
FOCUS_DURATION_SECONDS = int(os.getenv("FOCUS_DURATION_SECONDS", "1500"))
BREAK_DURATION_SECONDS = int(os.getenv("BREAK_DURATION_SECONDS", "300"))
TIMER_TICK_SECONDS = float(os.getenv("TIMER_TICK_SECONDS", "1"))

# Room configuration
ROOM_CODE_LENGTH = int(os.getenv("ROOM_CODE_LENGTH", "6"))
CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "200"))
SYSTEM_SENDER_NAME = "Focus Bot"
SYSTEM_SENDER_EMAIL = "system@studyhub.local"

# Resource configuration
RESOURCES_DIR = os.getenv("RESOURCES_DIR", "./data/resources")
RESOURCES_BASE_URL = os.getenv("RESOURCES_BASE_URL", "/files")
RESOURCE_POLL_INTERVAL_SECONDS = float(os.getenv("RESOURCE_POLL_INTERVAL_SECONDS", "5"))
MAX_RESOURCE_BYTES = int(os.getenv("MAX_RESOURCE_BYTES", str(4 * 1024 * 1024)))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# App configuration
APP_TITLE = "StudyHub API"
APP_VERSION = "1.0"
APP_DESCRIPTION = "Flashcard scheduling and realtime study rooms"

# CORS origins
# Note: When allow_credentials=True, you cannot use wildcard "*" for origins
CORS_ORIGINS_ENV = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]
# Add any additional origins from environment variable
if CORS_ORIGINS_ENV:
    CORS_ORIGINS.extend([origin.strip() for origin in CORS_ORIGINS_ENV.split(",")])

CORS_CREDENTIALS = True
CORS_METHODS = ["*"]
CORS_HEADERS = ["*"]
