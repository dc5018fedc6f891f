from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError


def _sort_key(value):
    return (value is not None, value)


def _matches(doc, filters) -> bool:
    for field, cond in filters.items():
        value = doc.get(field)
        if isinstance(cond, dict):
            for op, arg in cond.items():
                if op == "$in":
                    values = value if isinstance(value, list) else [value]
                    if not any(v in arg for v in values):
                        return False
                elif op == "$gte":
                    if value is None or value < arg:
                        return False
                elif op == "$lte":
                    if value is None or value > arg:
                        return False
                else:
                    raise AssertionError(f"unsupported operator {op}")
        elif value != cond:
            return False
    return True


class _StubCursor:
    def __init__(self, docs):
        self._docs = docs
        self._limit = None

    def sort(self, keys):
        for field, direction in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(d.get(field)), reverse=direction < 0)
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs if self._limit is None else self._docs[: self._limit]
        return [dict(d) for d in docs]


class StubCollection:
    """Just enough of the PyMongo async collection API for the service."""

    def __init__(self, docs=()):
        self.docs = [dict(d) for d in docs]
        self.calls = []

    def find(self, filters=None):
        self.calls.append("find")
        return _StubCursor([d for d in self.docs if _matches(d, filters or {})])

    async def find_one(self, filters):
        self.calls.append("find_one")
        for doc in self.docs:
            if _matches(doc, filters):
                return dict(doc)
        return None

    async def insert_one(self, doc):
        self.calls.append("insert_one")
        doc = dict(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, filters, update):
        self.calls.append("update_one")
        for doc in self.docs:
            if _matches(doc, filters):
                doc.update(update["$set"])
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, filters):
        self.calls.append("delete_one")
        for i, doc in enumerate(self.docs):
            if _matches(doc, filters):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, filters):
        self.calls.append("count_documents")
        return len([d for d in self.docs if _matches(d, filters)])

    def get(self, movie_id):
        for doc in self.docs:
            if str(doc["_id"]) == str(movie_id):
                return doc
        return None


class StubStore:
    def __init__(self, docs=(), available=True):
        self.collection = StubCollection(docs)
        self.available = available
        self.connects = 0

    async def get_collection(self):
        self.connects += 1
        if not self.available:
            raise ServerSelectionTimeoutError("no servers available")
        return self.collection

    async def ping(self):
        await self.get_collection()

    async def close(self):
        return None


class TickingClock:
    def __init__(self, start=datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now
