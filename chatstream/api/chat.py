import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from chatstream.core.deps import get_gateway, get_processor, get_registry, get_turn_runner
from chatstream.schemas import TurnRequest
from chatstream.services.background.processor import BackgroundProcessor
from chatstream.services.llm.registry import ProviderRegistry
from chatstream.services.orchestrator import EventChannel, SessionState, StreamSession, TurnRunner
from chatstream.services.persistence import PersistenceGateway
from chatstream.wire import MEDIA_TYPE, encode_event

router = APIRouter()
logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/stream-turn")
async def stream_turn(
    body: TurnRequest,
    gateway: PersistenceGateway = Depends(get_gateway),
    registry: ProviderRegistry = Depends(get_registry),
    processor: BackgroundProcessor = Depends(get_processor),
    turns: TurnRunner = Depends(get_turn_runner),
):
    """Run one chat turn and stream its events. Failures after this point are in-band."""
    channel = EventChannel()
    session = StreamSession(body, gateway, registry, processor, channel)
    turns.spawn(session.run())

    async def event_stream():
        try:
            async for event in channel:
                yield encode_event(event)
        finally:
            if not channel.closed:
                channel.close()
                if session.state not in (SessionState.DONE, SessionState.ERROR):
                    logger.info(f"Client disconnected during {session.state.value}, turn continues")

    return StreamingResponse(event_stream(), media_type=MEDIA_TYPE, headers=STREAM_HEADERS)


@router.get("/models")
async def list_models(registry: ProviderRegistry = Depends(get_registry)):
    return registry.available_models()
