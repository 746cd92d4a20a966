import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatstream.api import chat, conversations
from chatstream.core import database
from chatstream.core.config import settings
from chatstream.services.background import (
    BackgroundProcessor,
    FactDeduplicator,
    create_default_extractors,
)
from chatstream.services.llm.registry import create_default_registry
from chatstream.services.orchestrator import TurnRunner
from chatstream.services.persistence import PersistenceGateway


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    database.init_db(database.engine)
    gateway = PersistenceGateway(database.engine)
    registry = create_default_registry()

    # Services are built once here and handed to request handlers through app.state
    processor = BackgroundProcessor(
        gateway,
        create_default_extractors(registry),
        FactDeduplicator(gateway),
        workers=settings.background_workers,
        queue_size=settings.background_queue_size,
    )
    processor.start()

    app.state.gateway = gateway
    app.state.registry = registry
    app.state.processor = processor
    app.state.turns = TurnRunner()

    yield

    # Let running turns persist their replies before the workers go away
    await app.state.turns.drain()
    await processor.stop()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Rejected before any stream starts, so a plain 400 is still possible
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Invalid request data",
            "errors": [
                {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()
            ],
        },
    )


app.include_router(chat.router, prefix="/api", tags=["chat"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])


@app.get("/api/health")
async def health(request: Request):
    return {
        "status": "ok",
        "app": settings.app_name,
        "providers": request.app.state.registry.names(),
        "background": request.app.state.processor.snapshot(),
    }


def run() -> None:
    import uvicorn

    uvicorn.run("chatstream.main:app", host=settings.host, port=settings.port)
