from motor.motor_asyncio import AsyncIOMotorClient
from studyhub.core.config import MONGODB_URL, MONGODB_DB_NAME

# MongoDB client and database
client = AsyncIOMotorClient(MONGODB_URL)
db = client[MONGODB_DB_NAME]

# Collections
flashcards_collection = db.flashcards

# Redis client
import redis.asyncio as redis
from studyhub.core.config import REDIS_URL
import ssl

# Configure SSL for hosted Redis (rediss:// URLs)
_redis_options = {"decode_responses": True}
if REDIS_URL.startswith("rediss://"):
    _redis_options["ssl_cert_reqs"] = ssl.CERT_NONE

redis_client = redis.from_url(REDIS_URL, **_redis_options)
