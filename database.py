import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar

from bson import ObjectId
from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import DATABASE_NAME, DATABASE_URL, STORE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")

USERS = "users"
COURSES = "courses"
ENROLLMENTS = "enrollments"


class StoreUnavailable(Exception):
    """The document store could not be reached or rejected the operation."""


def create_client() -> AsyncIOMotorClient:
    timeout_ms = int(STORE_TIMEOUT_SECONDS * 1000)
    return AsyncIOMotorClient(
        DATABASE_URL,
        serverSelectionTimeoutMS=timeout_ms,
        timeoutMS=timeout_ms,
        tz_aware=True,
    )


def get_db(request: Request) -> AsyncIOMotorDatabase:
    """Request dependency returning the database opened by the app lifespan."""
    return request.app.state.db


async def run_store(operation: str, awaitable: Awaitable[T]) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=STORE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error("Store operation %s timed out after %ss", operation, STORE_TIMEOUT_SECONDS)
        raise StoreUnavailable(f"{operation} timed out")
    except DuplicateKeyError:
        # callers decide what a unique-index conflict means
        raise
    except PyMongoError as e:
        logger.error("Store operation %s failed: %s", operation, e)
        raise StoreUnavailable(f"{operation} failed")


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    # Unique email for users
    await db[USERS].create_index("email", unique=True)
    # Listing sorts and filters
    await db[COURSES].create_index([("createdAt", -1)])
    await db[COURSES].create_index([("price", 1)])
    await db[COURSES].create_index([("category", 1)])
    await db[COURSES].create_index([("instructorEmail", 1)])
    await db[ENROLLMENTS].create_index([("courseId", 1)])
    await db[ENROLLMENTS].create_index([("studentEmail", 1)])


def parse_object_id(value: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc["_id"])
    return doc


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    result = await run_store(f"{collection_name}.insert_one", db[collection_name].insert_one(data))
    return {"acknowledged": result.acknowledged, "insertedId": str(result.inserted_id)}


async def get_document(db: AsyncIOMotorDatabase, collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    doc = await run_store(f"{collection_name}.find_one", db[collection_name].find_one(filter_dict))
    return serialize(doc) if doc else None


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    skip: int = 0,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    filter_dict = filter_dict or {}
    cursor = db[collection_name].find(filter_dict)
    if sort:
        cursor = cursor.sort(list(sort))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)

    async def collect() -> List[Dict[str, Any]]:
        docs: List[Dict[str, Any]] = []
        async for doc in cursor:
            docs.append(serialize(doc))
        return docs

    return await run_store(f"{collection_name}.find", collect())


async def count_documents(db: AsyncIOMotorDatabase, collection_name: str, filter_dict: Dict[str, Any]) -> int:
    return await run_store(f"{collection_name}.count_documents", db[collection_name].count_documents(filter_dict))


async def update_document(
    db: AsyncIOMotorDatabase, collection_name: str, filter_dict: Dict[str, Any], updates: Dict[str, Any]
) -> Dict[str, Any]:
    result = await run_store(
        f"{collection_name}.update_one", db[collection_name].update_one(filter_dict, {"$set": updates})
    )
    return {
        "acknowledged": result.acknowledged,
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
    }


async def delete_documents(
    db: AsyncIOMotorDatabase, collection_name: str, filter_dict: Dict[str, Any], many: bool = False
) -> Dict[str, Any]:
    collection = db[collection_name]
    if many:
        result = await run_store(f"{collection_name}.delete_many", collection.delete_many(filter_dict))
    else:
        result = await run_store(f"{collection_name}.delete_one", collection.delete_one(filter_dict))
    return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}


async def ping(db: AsyncIOMotorDatabase) -> None:
    await run_store("ping", db.command("ping"))
