"""FastAPI server for registry and build webhook ingestion."""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import redis
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ..adapter import normalize, normalize_build_event
from ..common import (
    log_error,
    log_notification,
    log_server_message,
    setup_logging,
    verify_hmac_signature,
)
from ..config import AppConfig, RelayConfig
from ..models import MalformedEvent
from ..models.queue import ChannelAddress, EventChannel
from ..relay import BuildFailureRelay, Publisher, ReleaseRelay, RoutingDecision
from .config import IngestConfig

logger = logging.getLogger(__name__)


class IngestRuntime:
    """Relays shared by the webhook handlers."""

    def __init__(self, relay_config: RelayConfig, channel_factory: Callable[[ChannelAddress], Publisher]):
        self.release_relay = ReleaseRelay(relay_config, channel_factory)
        self.build_relay = BuildFailureRelay(relay_config, channel_factory)

    @classmethod
    def from_config(cls, config: IngestConfig) -> "IngestRuntime":
        app_config = AppConfig.load(config.config_path)
        return cls(app_config.relay, lambda address: EventChannel(address, config.redis_url))


def _decision_response(decision: RoutingDecision) -> Dict[str, Any]:
    if decision.forward:
        return {"status": "forwarded", "destination": str(decision.destination)}
    return {"status": "dropped", "reason": decision.reason}


def create_app(config: Optional[IngestConfig] = None, runtime: Optional[IngestRuntime] = None) -> FastAPI:
    """Build the ingest application.

    The runtime is created from the YAML configuration on first use unless
    one is supplied.
    """
    config = config or IngestConfig.from_env()
    app = FastAPI(title="Deprelay Ingest", version="1.0.0")
    app.state.runtime = runtime

    def get_runtime() -> IngestRuntime:
        if app.state.runtime is None:
            app.state.runtime = IngestRuntime.from_config(config)
        return app.state.runtime

    async def read_verified_payload(request: Request) -> Any:
        body = await request.body()
        raw_body = body.decode("utf-8", errors="ignore")

        if not config.webhook_secret:
            log_server_message("Webhook secret not configured")
            log_error("Webhook secret not configured", raw_body)
            raise HTTPException(status_code=500, detail="Webhook secret not configured")

        signature_header = request.headers.get("X-Hub-Signature")
        if not signature_header:
            log_server_message("Missing X-Hub-Signature header")
            log_error("Missing X-Hub-Signature header", raw_body)
            raise HTTPException(status_code=401, detail="Missing X-Hub-Signature header")

        if not verify_hmac_signature(body, signature_header, config.webhook_secret):
            log_server_message("Invalid HMAC signature")
            log_error("Invalid HMAC signature", raw_body)
            raise HTTPException(status_code=401, detail="Invalid HMAC signature")

        try:
            return json.loads(body)
        except ValueError as e:
            # JSONDecodeError, or UnicodeDecodeError for bodies that are not text
            log_server_message(f"JSON parsing error: {e}")
            log_error(f"Invalid JSON in request body: {e}", raw_body)
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

    async def forward(relay_call, event) -> Dict[str, Any]:
        try:
            decision = await asyncio.to_thread(relay_call, event)
        except redis.RedisError as e:
            log_error(f"Failed to publish event: {e}", event.model_dump_json())
            raise HTTPException(status_code=500, detail="Failed to publish event")
        return _decision_response(decision)

    @app.on_event("startup")
    async def startup_event():
        """Handle application startup."""
        setup_logging(config.log_dir)
        log_server_message("Server starting up")
        log_server_message(f"Release endpoint: {config.release_endpoint}")
        log_server_message(f"Build endpoint: {config.build_endpoint}")
        log_server_message("Health check: /health")
        log_server_message("Server ready")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Handle application shutdown."""
        log_server_message("Server shutting down")

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "deprelay_ingest"}

    @app.post(config.release_endpoint)
    async def release_webhook(request: Request):
        """Normalize a registry publish notification and relay it."""
        payload = await read_verified_payload(request)
        log_notification(payload, "release")

        try:
            event = normalize(payload)
        except MalformedEvent as e:
            log_server_message(f"Discarding malformed release notification: {e}")
            log_error(f"Malformed release notification: {e}", json.dumps(payload, default=str))
            return JSONResponse(status_code=202, content={"status": "discarded", "reason": str(e)})

        log_server_message(f"Release notification for {event.release_key}")
        return await forward(get_runtime().release_relay.relay, event)

    @app.post(config.build_endpoint)
    async def build_webhook(request: Request):
        """Normalize a build state notification and relay failures back."""
        payload = await read_verified_payload(request)
        log_notification(payload, "build")

        try:
            event = normalize_build_event(payload)
        except MalformedEvent as e:
            log_server_message(f"Discarding malformed build notification: {e}")
            log_error(f"Malformed build notification: {e}", json.dumps(payload, default=str))
            return JSONResponse(status_code=202, content={"status": "discarded", "reason": str(e)})

        log_server_message(f"Build notification for {event.build_id} ({event.status})")
        return await forward(get_runtime().build_relay.relay, event)

    return app


app = create_app()
