"""Shared fakes and helpers for claude-relay tests."""

import asyncio
import inspect
import json
from typing import Any, Callable, Optional

from claude_relay.config import AgentConfigManager, SupervisionSettings
from claude_relay.errors import CLICancelledError
from claude_relay.invoker import InvocationRequest, InvocationResult


def fast_settings(**overrides) -> SupervisionSettings:
	"""Supervision settings shrunk so timers fire within a test."""
	values = dict(
		executor_status_interval=0.0,
		orchestrator_status_interval=0.0,
		heartbeat_interval=60.0,
		stall_check_interval=60.0,
		stall_warning=120.0,
		stall_kill=300.0,
		retry_delay=0.01,
		summary_timeout=5.0,
		max_units=10,
	)
	values.update(overrides)
	return SupervisionSettings(**values)


class FakeInvoker:
	"""
	Stands in for ClaudeInvoker.

	The handler receives each InvocationRequest and returns an
	InvocationResult (or a str, wrapped as a successful result), or raises.
	It may be a coroutine function. With chunk_size set, output is streamed
	in pieces of that many characters, like raw stdout reads.
	"""

	def __init__(self, handler: Callable[[InvocationRequest], Any], chunk_size: Optional[int] = None):
		self.handler = handler
		self.chunk_size = chunk_size
		self.requests: list[InvocationRequest] = []

	async def invoke(
		self,
		request: InvocationRequest,
		on_invocation=None,
		on_activity=None,
		on_output=None,
	) -> InvocationResult:
		self.requests.append(request)
		if request.cancellation and request.cancellation.cancelled:
			raise CLICancelledError("Cancelled")
		result = self.handler(request)
		if inspect.isawaitable(result):
			result = await result
		if isinstance(result, str):
			result = InvocationResult(result=result, session_id="sess-1", cost_usd=0.01)
		if on_activity:
			on_activity()
		if on_output:
			size = self.chunk_size or len(result.result) or 1
			for start in range(0, len(result.result), size):
				await on_output(result.result[start:start + size])
		if on_invocation:
			on_invocation({"type": "result", "result": result.result, "total_cost_usd": result.cost_usd})
		return result


async def block_until_cancelled(request: InvocationRequest) -> None:
	"""Handler body for a unit that only ends when cancelled."""
	await request.cancellation.wait()
	raise CLICancelledError("Cancelled")


class RecordingSink:
	"""Async status sink that keeps every update."""

	def __init__(self):
		self.updates = []

	async def __call__(self, update) -> None:
		self.updates.append(update)

	def messages(self) -> list[str]:
		return [u.message for u in self.updates]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
	"""Poll until predicate is true."""
	deadline = asyncio.get_running_loop().time() + timeout
	while not predicate():
		if asyncio.get_running_loop().time() > deadline:
			raise AssertionError("condition not met in time")
		await asyncio.sleep(0.005)


def agent_config(tmp_path=None) -> AgentConfigManager:
	return AgentConfigManager(tmp_path / "agent-config.json" if tmp_path else None)


def plan_json(*workers: dict, sequential: bool = False, summary: str = "Test plan") -> str:
	return json.dumps({
		"type": "plan",
		"summary": summary,
		"workers": list(workers),
		"sequential": sequential,
	})


def unit(unit_id: str, prompt: Optional[str] = None, depends_on: Optional[list[str]] = None) -> dict:
	return {
		"id": unit_id,
		"description": f"Do {unit_id}",
		"prompt": prompt or f"prompt for {unit_id}",
		"dependsOn": depends_on or [],
	}
