"""Starlette app with route assembly."""

from __future__ import annotations

from typing import Optional

from starlette.applications import Starlette
from starlette.routing import Route

from ..agents.registry import AgentRegistry
from ..config import AgentConfigManager
from ..telemetry import InvocationLog
from .api import (
	api_agents,
	api_agents_stream,
	api_config,
	api_invocations,
	index,
)


def build_app(
	registry: AgentRegistry,
	invocation_log: Optional[InvocationLog] = None,
	agent_config: Optional[AgentConfigManager] = None,
) -> Starlette:
	"""Build and return the Starlette ASGI app."""
	routes = [
		Route("/", index),
		Route("/api/agents", api_agents),
		Route("/api/agents/stream", api_agents_stream),
		Route("/api/invocations", api_invocations),
		Route("/api/config", api_config),
	]

	app = Starlette(routes=routes)
	app.state.registry = registry
	app.state.invocation_log = invocation_log or InvocationLog()
	app.state.agent_config = agent_config or AgentConfigManager()
	return app
