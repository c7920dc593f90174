"""Status server for claude-relay: live agent view over JSON and SSE."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
	from starlette.applications import Starlette

	from ..agents.registry import AgentRegistry
	from ..config import AgentConfigManager
	from ..telemetry import InvocationLog

logger = logging.getLogger(__name__)


def create_app(
	registry: AgentRegistry,
	invocation_log: Optional[InvocationLog] = None,
	agent_config: Optional[AgentConfigManager] = None,
) -> Starlette:
	"""Create the Starlette ASGI application."""
	from .app import build_app

	return build_app(registry, invocation_log=invocation_log, agent_config=agent_config)


async def serve_status(
	app: Starlette,
	host: str = "127.0.0.1",
	port: int = 3069,
) -> None:
	"""Serve the status app inside the running event loop until cancelled."""
	import uvicorn

	server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
	logger.info(f"Status server running at http://{host}:{port}")
	await server.serve()
