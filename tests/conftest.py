"""
Pytest configuration for API tests.

Routes receive their database through the ``get_db`` dependency, so tests
override it with an in-memory fake that understands the small subset of the
Mongo query language the service uses (equality and ``$regex``).
"""
from __future__ import annotations

import asyncio
import copy
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from bson import ObjectId
from httpx import ASGITransport
from pymongo.errors import ServerSelectionTimeoutError

import main  # type: ignore
from auth import create_access_token  # type: ignore
from config import TOKEN_COOKIE_NAME  # type: ignore
from database import get_db  # type: ignore


def _matches(doc: dict, filter_dict: dict) -> bool:
    for key, cond in filter_dict.items():
        value = doc.get(key)
        if isinstance(cond, dict) and "$regex" in cond:
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            if not isinstance(value, str) or not re.search(cond["$regex"], value, flags):
                return False
        elif value != cond:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, keys: list[tuple[str, int]]):
        for key, direction in reversed(keys):
            self._docs.sort(key=lambda d: d[key], reverse=direction < 0)
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def _iter(self):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[: self._limit]
        for doc in docs:
            yield doc

    def __aiter__(self):
        return self._iter()


class FakeCollection:
    def __init__(self):
        self.docs: list[dict] = []

    def add(self, doc: dict) -> str:
        """Synchronous seeding helper; returns the new id as hex."""
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        self.docs.append(stored)
        return str(stored["_id"])

    def _select(self, filter_dict: dict) -> list[dict]:
        return [d for d in self.docs if _matches(d, filter_dict)]

    async def insert_one(self, doc: dict):
        return SimpleNamespace(acknowledged=True, inserted_id=ObjectId(self.add(doc)))

    async def find_one(self, filter_dict: dict):
        found = self._select(filter_dict)
        return copy.deepcopy(found[0]) if found else None

    def find(self, filter_dict: dict):
        return FakeCursor([copy.deepcopy(d) for d in self._select(filter_dict)])

    async def count_documents(self, filter_dict: dict) -> int:
        return len(self._select(filter_dict))

    async def update_one(self, filter_dict: dict, update: dict):
        found = self._select(filter_dict)
        if not found:
            return SimpleNamespace(acknowledged=True, matched_count=0, modified_count=0)
        doc = found[0]
        changes = {k: v for k, v in update["$set"].items() if doc.get(k) != v}
        doc.update(changes)
        return SimpleNamespace(acknowledged=True, matched_count=1, modified_count=1 if changes else 0)

    async def delete_one(self, filter_dict: dict):
        found = self._select(filter_dict)[:1]
        self.docs = [d for d in self.docs if not any(d is f for f in found)]
        return SimpleNamespace(acknowledged=True, deleted_count=len(found))

    async def delete_many(self, filter_dict: dict):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not _matches(d, filter_dict)]
        return SimpleNamespace(acknowledged=True, deleted_count=before - len(self.docs))

    async def create_index(self, *args, **kwargs) -> str:
        return "index"


class FakeDatabase:
    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())

    async def command(self, name: str) -> dict:
        return {"ok": 1.0}


class UnreachableCollection:
    def __getattr__(self, name: str) -> Any:
        async def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("No servers found")

        return fail

    def find(self, *args, **kwargs):
        cursor = FakeCursor([])

        async def _iter():
            raise ServerSelectionTimeoutError("No servers found")
            yield  # pragma: no cover

        cursor._iter = _iter  # type: ignore[method-assign]
        return cursor


class UnreachableDatabase:
    def __getitem__(self, name: str) -> UnreachableCollection:
        return UnreachableCollection()

    async def command(self, name: str) -> dict:
        raise ServerSelectionTimeoutError("No servers found")


class SlowCollection(FakeCollection):
    async def find_one(self, filter_dict: dict):
        await asyncio.sleep(1)
        return None


class SlowDatabase(FakeDatabase):
    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, SlowCollection())


def course_doc(title: str, price: float, **fields: Any) -> dict:
    doc = {
        "title": title,
        "category": "Programming",
        "price": price,
        "duration": "4 weeks",
        "description": f"{title} course",
        "image": None,
        "instructorEmail": "teacher@example.com",
        "isFeatured": False,
    }
    doc.update(fields)
    return doc


def seed_courses(db: FakeDatabase, *docs: dict) -> list[str]:
    """Insert courses with increasing creation times in the given order."""
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ids = []
    for i, doc in enumerate(docs):
        doc = {**doc}
        doc.setdefault("createdAt", base + timedelta(days=i))
        ids.append(db["courses"].add(doc))
    return ids


def login(client: httpx.AsyncClient, email: str) -> None:
    client.cookies.set(TOKEN_COOKIE_NAME, create_access_token({"email": email}))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    fake = FakeDatabase()
    main.app.dependency_overrides[get_db] = lambda: fake
    yield fake
    main.app.dependency_overrides.clear()


@pytest.fixture
async def client(db):
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as c:
        yield c
