"""FastAPI dependencies for the services built in the application lifespan."""

from fastapi import Request

from chatstream.services.background.processor import BackgroundProcessor
from chatstream.services.llm.registry import ProviderRegistry
from chatstream.services.orchestrator import TurnRunner
from chatstream.services.persistence import PersistenceGateway


def get_gateway(request: Request) -> PersistenceGateway:
    return request.app.state.gateway


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_processor(request: Request) -> BackgroundProcessor:
    return request.app.state.processor


def get_turn_runner(request: Request) -> TurnRunner:
    return request.app.state.turns
