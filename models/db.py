from pymongo import AsyncMongoClient

from config import MONGO_URI, DB_NAME

client = AsyncMongoClient(MONGO_URI, tz_aware=True)

# If URI contains a database path -> get_default_database() works
db = client.get_default_database(default=DB_NAME)
