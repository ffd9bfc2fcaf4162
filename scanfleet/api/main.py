"""
FastAPI application factory for scanfleet.

``create_app()`` wires one FleetManager, StatusStore and EventFanout per
application and stores them on ``app.state``::

    app = create_app(config, provider=DigitalOceanProvider(...))
    uvicorn.run(app, host=config.api.host, port=config.api.port)
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from scanfleet import __version__
from scanfleet.app_config import AppConfig
from scanfleet.fanout import EventFanout
from scanfleet.fleet_manager import FleetManager, FleetManagerConfig
from scanfleet.logconfig import get_module_logger
from scanfleet.provider import DigitalOceanConfig, DigitalOceanProvider, FleetProvider
from scanfleet.status_store import StatusStore
from .error_handlers import install_error_handlers
from .routers import health, scan, websocket, worker

log = get_module_logger("api")


def _parse_origins(value: str) -> list[str]:
    value = (value or "*").strip()
    if value == "*":
        return ["*"]
    return [v.strip() for v in value.split(",") if v.strip()]


def _connect_redis(url: str) -> Any:
    """Client for the status mirror, or None if unreachable."""
    try:
        import redis
        client = redis.Redis.from_url(url, decode_responses=True)
        client.ping()
        log.info("Mirroring job status to Redis: %s", url)
        return client
    except Exception as e:
        log.error("Redis connection failed, status mirror disabled: %s", e)
        return None


def build_provider(config: AppConfig) -> FleetProvider:
    p = config.provider
    return DigitalOceanProvider(DigitalOceanConfig(
        api_token=p.api_token,
        region=p.region,
        size=p.size,
        image=p.image,
        api_url=p.api_url,
        timeout=p.timeout,
    ))


def create_app(config: AppConfig | None = None,
               provider: FleetProvider | None = None) -> FastAPI:
    """Build the API application.

    Args:
        config: Application config; read from the environment when omitted.
        provider: Fleet provider; a DigitalOcean provider is built from
            ``config.provider`` when omitted.
    """
    if config is None:
        config = AppConfig.from_env()
    if provider is None:
        provider = build_provider(config)

    redis_client = _connect_redis(config.redis.url) if config.redis.url else None
    store = StatusStore(redis_client=redis_client)
    fanout = EventFanout(queue_size=config.fanout.queue_size)
    manager = FleetManager(
        provider,
        store=store,
        fanout=fanout,
        config=FleetManagerConfig.from_app_config(config),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("scanfleet API %s ready (%s)", __version__, config.summary())
        yield
        manager.shutdown()
        fanout.shutdown()
        log.info("scanfleet API stopped")

    app = FastAPI(
        title="scanfleet API",
        description="Distributed nuclei scanning across a transient droplet fleet",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.provider = provider
    app.state.store = store
    app.state.fanout = fanout
    app.state.manager = manager

    origins = _parse_origins(config.api.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(scan.router, prefix="/api")
    app.include_router(worker.router, prefix="/api")
    app.include_router(websocket.router, prefix="/ws", tags=["websocket"])
    app.include_router(health.router)

    return app
