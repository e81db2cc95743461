from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import uuid

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from latency_lab.commands import resolve_platform
from latency_lab.config import AppConfig, default_config
from latency_lab.dispatcher import Dispatcher
from latency_lab.executor import ProbeExecutor
from latency_lab.sessions import SessionRegistry

HEALTH_PAYLOAD = {"status": "LatencyLab backend running"}


def build_registry(config: AppConfig) -> SessionRegistry:
    probe = config.probe
    executor = ProbeExecutor(
        resolve_platform(probe.platform),
        tools=probe.tools,
        ping_timeout_s=probe.ping_timeout_s,
        traceroute_timeout_s=probe.traceroute_timeout_s,
    )
    return SessionRegistry(executor, min_interval_ms=probe.min_interval_ms)


def create_app(
    config: AppConfig | None = None, registry: SessionRegistry | None = None
) -> FastAPI:
    if config is None:
        config = default_config()
    if registry is None:
        registry = build_registry(config)
    dispatcher = Dispatcher(registry, default_interval_ms=config.probe.default_interval_ms)
    logger = logging.getLogger("latency_lab")

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logger.info(
            "LatencyLab probing with %s commands",
            registry.executor.platform.value,
        )
        yield
        await registry.shutdown()

    app = FastAPI(title="latency-lab", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.registry = registry
    app.state.dispatcher = dispatcher

    @app.get("/")
    async def health() -> dict:
        return HEALTH_PAYLOAD

    async def stream_probes(websocket: WebSocket) -> None:
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        registry.open(connection_id, websocket)
        logger.info("Client connected: %s", connection_id)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await dispatcher.handle(connection_id, raw)
        except WebSocketDisconnect:
            pass
        finally:
            registry.close(connection_id)
            logger.info("Client disconnected: %s", connection_id)

    app.add_api_websocket_route("/", stream_probes)
    app.add_api_websocket_route("/ws", stream_probes)
    return app
