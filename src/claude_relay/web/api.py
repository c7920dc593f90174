"""JSON API endpoints and SSE stream for the status server."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from typing import AsyncGenerator

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, StreamingResponse

from ..agents.registry import AgentRegistry, RegistryEvent
from .templates import DASHBOARD_HTML

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


def get_registry(request: Request) -> AgentRegistry:
	"""Get the AgentRegistry from app state."""
	return request.app.state.registry


async def index(request: Request) -> HTMLResponse:
	"""Serve the status page."""
	return HTMLResponse(DASHBOARD_HTML)


async def api_agents(request: Request) -> JSONResponse:
	"""Live agents plus recently completed history."""
	return JSONResponse(get_registry(request).snapshot())


async def api_invocations(request: Request) -> JSONResponse:
	"""Recent CLI invocations with cost and duration."""
	log = request.app.state.invocation_log
	try:
		limit = int(request.query_params.get("limit", "20"))
	except ValueError:
		limit = 20
	return JSONResponse({
		"invocations": [asdict(entry) for entry in log.recent(limit)],
		"total_cost_usd": round(log.total_cost(), 6),
	})


async def api_config(request: Request) -> JSONResponse:
	"""Per-tier agent settings alongside their defaults."""
	agent_config = request.app.state.agent_config
	return JSONResponse({
		"tiers": agent_config.all(),
		"defaults": agent_config.defaults(),
	})


def _format_event(name: str, payload: dict) -> str:
	return f"event: {name}\ndata: {json.dumps(payload)}\n\n"


async def registry_events(
	registry: AgentRegistry,
	keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncGenerator[str, None]:
	"""Yield registry changes as SSE events, starting with a full snapshot."""
	loop = asyncio.get_running_loop()
	queue: asyncio.Queue[RegistryEvent] = asyncio.Queue()

	def listener(event: RegistryEvent) -> None:
		loop.call_soon_threadsafe(queue.put_nowait, event)

	unsubscribe = registry.subscribe(listener)
	try:
		yield _format_event("snapshot", registry.snapshot())
		while True:
			try:
				event = await asyncio.wait_for(queue.get(), timeout=keepalive)
			except asyncio.TimeoutError:
				# Keep proxies from closing an idle connection
				yield ": heartbeat\n\n"
				continue
			yield _format_event(event.type.value, event.to_dict())
	finally:
		unsubscribe()
		logger.debug("SSE client disconnected")


async def api_agents_stream(request: Request) -> StreamingResponse:
	"""SSE endpoint - pushes every registry change as it happens."""
	return StreamingResponse(
		registry_events(get_registry(request)),
		media_type="text/event-stream",
		headers={
			"Cache-Control": "no-cache",
			"Connection": "keep-alive",
			"X-Accel-Buffering": "no",
		},
	)
