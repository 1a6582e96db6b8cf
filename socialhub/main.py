from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from socialhub.config import settings
from socialhub.deps import init_db
from socialhub.errors import SocialHubError
from socialhub.logger import setup_logger

# Routers
from socialhub.routers import connections, posts, scheduler_api

app = FastAPI(title="SocialHub API", version="0.1.0")


@app.on_event("startup")
def _startup():
    setup_logger(settings.log_level, settings.log_file)
    init_db()


@app.exception_handler(SocialHubError)
async def _socialhub_error(request: Request, exc: SocialHubError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.get("/")
def root():
    return {"message": "SocialHub API is running!"}


# Mount routes
app.include_router(connections.router)     # /connections/*
app.include_router(posts.router)           # /posts/*
app.include_router(scheduler_api.router)   # /scheduler/*
