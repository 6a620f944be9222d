from motor.motor_asyncio import AsyncIOMotorClient

from config.env import MONGODB_URI

client = AsyncIOMotorClient(MONGODB_URI)
db = client.get_default_database("campus_cycle")

def get_db():
    return db
