"""This module serves as a service layer for the movie database, providing
functions to list, create, read, update, and delete movie documents.
Mutating operations are restricted to the record's owner, the email stored
in `addedBy` at creation. That email is supplied by the caller and is not
verified in any way.
moviemaster.movie_service.py
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pymongo import ASCENDING, DESCENDING

logger = logging.getLogger(__name__)

TOP_RATED_LIMIT = 5
RECENT_LIMIT = 6

# Never written by an update, whatever the client sends.
PROTECTED_FIELDS = ("_id", "id", "addedBy", "createdAt")
CALLER_EMAIL_KEYS = ("userEmail", "callerEmail")


class MovieServiceError(Exception):
    kind = "InternalError"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(MovieServiceError):
    kind = "BadRequest"
    status_code = 400


class UnauthorizedError(MovieServiceError):
    kind = "Unauthorized"
    status_code = 401


class ForbiddenError(MovieServiceError):
    kind = "Forbidden"
    status_code = 403


class MovieNotFoundError(MovieServiceError):
    kind = "NotFound"
    status_code = 404


class MovieCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    addedBy: Optional[str] = None


class MovieUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    userEmail: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("userEmail", "callerEmail")
    )

    def fields(self) -> Dict[str, Any]:
        # only one alias is consumed; the other would land in the extras
        data = self.model_dump(exclude={"userEmail"})
        for key in CALLER_EMAIL_KEYS:
            data.pop(key, None)
        return data


def is_valid_id(movie_id) -> bool:
    return isinstance(movie_id, str) and ObjectId.is_valid(movie_id)


def _object_id(movie_id) -> ObjectId:
    if not is_valid_id(movie_id):
        raise BadRequestError("Invalid ID")
    return ObjectId(movie_id)


def _is_filled(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _parse_rating(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparsable rating bound %r", value)
        return None


def split_genres(genres: Optional[Iterable[str]]) -> List[str]:
    # ?genre=Drama,Action and ?genre=Drama&genre=Action mean the same thing
    if genres is None:
        return []
    if isinstance(genres, str):
        genres = [genres]
    tags = []
    for value in genres:
        tags.extend(tag.strip() for tag in value.split(",") if tag.strip())
    return tags


def build_movie_filter(genres=None, min_rating=None, max_rating=None) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}

    tags = split_genres(genres)
    if tags:
        filters["genre"] = {"$in": tags}

    low = _parse_rating(min_rating)
    high = _parse_rating(max_rating)
    if low is not None or high is not None:
        filters["rating"] = {}
        if low is not None:
            filters["rating"]["$gte"] = low
        if high is not None:
            filters["rating"]["$lte"] = high

    return filters


def serialize_movie(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc


def resolve_caller_email(*candidates) -> Optional[str]:
    """Return the first non-empty email among header, query and body values."""
    for value in candidates:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _utcnow():
    return datetime.now(timezone.utc)


class MovieService:
    def __init__(self, store, clock=_utcnow):
        self.store = store
        self.clock = clock

    async def _collection(self):
        return await self.store.get_collection()

    async def _find(self, filters, sort, limit=None) -> List[Dict[str, Any]]:
        collection = await self._collection()
        cursor = collection.find(filters).sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=None)
        return [serialize_movie(doc) for doc in docs]

    async def _get_owned(self, movie_id, caller_email):
        oid = _object_id(movie_id)
        collection = await self._collection()
        doc = await collection.find_one({"_id": oid})
        if not doc:
            raise MovieNotFoundError("Movie not found")
        if doc.get("addedBy") != caller_email:
            logger.warning("Ownership check failed for movie %s (caller %r)", movie_id, caller_email)
            raise ForbiddenError("Not allowed to modify this movie")
        return collection, oid

    async def list_movies(self, genres=None, min_rating=None, max_rating=None):
        filters = build_movie_filter(genres, min_rating, max_rating)
        return await self._find(filters, [("createdAt", DESCENDING)])

    async def get_movie(self, movie_id: str):
        oid = _object_id(movie_id)
        collection = await self._collection()
        doc = await collection.find_one({"_id": oid})
        if not doc:
            raise MovieNotFoundError("Movie not found")
        return serialize_movie(doc)

    async def list_movies_by_owner(self, email: str):
        return await self._find({"addedBy": email}, [("createdAt", DESCENDING)])

    async def create_movie(self, movie: MovieCreate) -> str:
        doc = movie.model_dump()
        title = doc.get("title")
        added_by = doc.get("addedBy")
        if not _is_filled(title) or not _is_filled(added_by):
            raise BadRequestError("Title & addedBy required")

        for key in ("_id", "id"):
            doc.pop(key, None)
        doc["createdAt"] = self.clock()

        collection = await self._collection()
        result = await collection.insert_one(doc)
        logger.info("Movie %s added by %s", result.inserted_id, added_by)
        return str(result.inserted_id)

    async def update_movie(self, movie_id: str, caller_email: Optional[str], fields: Dict[str, Any]):
        collection, oid = await self._get_owned(movie_id, caller_email)

        update_data = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS}
        if "title" in update_data and not _is_filled(update_data["title"]):
            raise BadRequestError("Title cannot be empty")
        if update_data:
            await collection.update_one({"_id": oid}, {"$set": update_data})
        logger.info("Movie %s updated by %s", movie_id, caller_email)

    async def delete_movie(self, movie_id: str, caller_email: Optional[str]):
        _object_id(movie_id)
        if not caller_email:
            raise UnauthorizedError("User email required to delete")

        collection, oid = await self._get_owned(movie_id, caller_email)
        await collection.delete_one({"_id": oid})
        logger.info("Movie %s deleted by %s", movie_id, caller_email)

    async def top_rated(self):
        return await self._find({}, [("rating", DESCENDING), ("_id", ASCENDING)], TOP_RATED_LIMIT)

    async def recent(self):
        return await self._find({}, [("createdAt", DESCENDING)], RECENT_LIMIT)

    async def count(self) -> int:
        collection = await self._collection()
        return await collection.count_documents({})
