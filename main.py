import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware  # 導入 CORSMiddleware

import auth
import redirect
import stats
import urls
from cache import client_ip
from database import close_mongo_connection, connect_to_mongo
from envelope import register_exception_handlers
from logging_config import initialize_logging

load_dotenv()
initialize_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Connect to MongoDB and initialize Beanie
    mongo_client, _ = await connect_to_mongo()
    # Redis connection is handled by dependency injection per request
    yield
    await close_mongo_connection(mongo_client)


app = FastAPI(
    title="Link Shortener",
    description="Shortens URLs, redirects short codes and reports click analytics.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        f"{request.method} {request.url.path}",
        extra={
            "status_code": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            "ip": client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        },
    )
    return response


@app.get("/health", tags=["Health Check"])
async def health_check():
    """
    Health check endpoint to verify service status.
    """
    return {"status": "ok", "message": "Link Shortener is running!"}


app.include_router(auth.router)
app.include_router(urls.router)
app.include_router(stats.router)
# Catch-all /{short_code} routes go last
app.include_router(redirect.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
