"""
This module  is the main entry point for the FastAPI application.
It initializes the FastAPI app and defines the API endpoints for listing,
creating, updating and deleting movies, plus a few read-only summaries
(top rated, recent, count) used by the frontend home page.
Service errors are turned into structured JSON responses here.
moviemaster.main.py
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from moviemaster.db import get_store
from moviemaster.movie_service import (
    BadRequestError,
    MovieCreate,
    MovieService,
    MovieServiceError,
    MovieUpdate,
    resolve_caller_email,
)

logger = logging.getLogger(__name__)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]
EAGER_CONNECT = os.getenv("EAGER_CONNECT", "false").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    if EAGER_CONNECT:
        # standalone server: refuse to start without a database
        await store.get_collection()
    yield
    await store.close()


app = FastAPI(title="MovieMaster API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
    except Exception:
        logger.info("%s %s -> 500", request.method, request.url.path)
        raise
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.exception_handler(MovieServiceError)
async def movie_service_error_handler(request: Request, exc: MovieServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.kind, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # malformed or missing bodies are a BadRequest
    detail = "; ".join(
        "{}: {}".format(".".join(str(part) for part in err.get("loc", ())), err.get("msg", ""))
        for err in exc.errors()
    )
    return await movie_service_error_handler(request, BadRequestError(detail or "Invalid request"))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "InternalError", "message": "Internal Server Error"},
    )


def get_movie_service(store=Depends(get_store)) -> MovieService:
    return MovieService(store)


@app.get("/", response_class=PlainTextResponse)
def root():
    return "MovieMaster API is running!"


@app.get("/health")
async def health(store=Depends(get_store)):
    try:
        await store.ping()
    except Exception as e:
        logger.warning("Health check failed: %s", e)
        return JSONResponse(status_code=503, content={"status": "error", "database": "unavailable"})
    return {"status": "ok", "database": "connected"}


@app.get("/movies")
async def list_movies(
    genre: Optional[List[str]] = Query(None),
    minRating: Optional[str] = None,
    maxRating: Optional[str] = None,
    service: MovieService = Depends(get_movie_service),
):
    return await service.list_movies(genre, minRating, maxRating)


@app.get("/movies/{movie_id}")
async def get(movie_id: str, service: MovieService = Depends(get_movie_service)):
    return await service.get_movie(movie_id)


@app.get("/my-movies/{email}")
async def my_movies(email: str, service: MovieService = Depends(get_movie_service)):
    return await service.list_movies_by_owner(email)


@app.post("/movies", status_code=201)
async def create(movie: MovieCreate, service: MovieService = Depends(get_movie_service)):
    inserted_id = await service.create_movie(movie)
    return {"success": True, "insertedId": inserted_id}


@app.put("/movies/{movie_id}")
async def update(
    movie_id: str,
    movie: Optional[MovieUpdate] = None,
    user_email: Optional[str] = Header(None),
    userEmail: Optional[str] = Query(None),
    service: MovieService = Depends(get_movie_service),
):
    if movie is None:
        movie = MovieUpdate()
    caller = resolve_caller_email(user_email, userEmail, movie.userEmail)
    await service.update_movie(movie_id, caller, movie.fields())
    return {"success": True, "message": "Movie updated"}


@app.delete("/movies/{movie_id}")
async def delete(
    movie_id: str,
    user_email: Optional[str] = Header(None),
    userEmail: Optional[str] = Query(None),
    body: Optional[dict] = Body(None),
    service: MovieService = Depends(get_movie_service),
):
    body = body or {}
    caller = resolve_caller_email(
        user_email, userEmail, body.get("userEmail"), body.get("callerEmail")
    )
    await service.delete_movie(movie_id, caller)
    return {"success": True, "message": "Movie deleted successfully"}


@app.get("/top-rated")
async def top_rated(service: MovieService = Depends(get_movie_service)):
    return await service.top_rated()


@app.get("/recent")
async def recent(service: MovieService = Depends(get_movie_service)):
    return await service.recent()


@app.get("/stats/count")
async def count(service: MovieService = Depends(get_movie_service)):
    return {"totalMovies": await service.count()}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "moviemaster.main:app",
        host=os.getenv("HOST", "localhost"),
        port=int(os.getenv("PORT", "5000")),
    )
