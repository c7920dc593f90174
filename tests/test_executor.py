"""Tests for the direct execution strategy."""

import asyncio

import pytest

from claude_relay.agents import executor as executor_module
from claude_relay.agents.executor import Executor, build_executor_prompt
from claude_relay.agents.models import AgentPhase, Complexity, UpdateType, WorkRequest
from claude_relay.agents.monitor import Budget
from claude_relay.agents.registry import AgentRegistry
from claude_relay.cancellation import Cancellation
from claude_relay.errors import CLIProcessError
from claude_relay.invoker import InvocationResult
from tests.helpers import (
	FakeInvoker,
	RecordingSink,
	agent_config,
	block_until_cancelled,
	fast_settings,
	wait_for,
)


def make_executor(handler, **settings):
	registry = AgentRegistry()
	executor = Executor(FakeInvoker(handler), agent_config(), registry, fast_settings(**settings))
	return executor, registry


def request(complexity=Complexity.MODERATE) -> WorkRequest:
	return WorkRequest(task="Fix the failing test", context="CI is red", complexity=complexity)


def test_build_executor_prompt():
	prompt = build_executor_prompt(request(), "please fix CI", "/repo")

	assert prompt.index("## Task") < prompt.index("## Context")
	assert "please fix CI" in prompt
	assert prompt.endswith("## Working Directory\n/repo")


def test_build_executor_prompt_without_context():
	prompt = build_executor_prompt(WorkRequest(task="ls"), "ls", "/repo")
	assert "## Context" not in prompt


class TestExecutor:
	"""Tests for Executor.execute."""

	@pytest.mark.asyncio
	async def test_success(self, tmp_path):
		executor, registry = make_executor(lambda r: "Fixed the assertion")
		sink = RecordingSink()
		telemetry = []

		result = await executor.execute(
			1, request(), "please fix CI", str(tmp_path),
			on_status=sink,
			on_invocation=lambda raw, tier: telemetry.append(tier),
		)

		assert result.success
		assert result.result == "Fixed the assertion"
		assert result.cost_usd == 0.01
		assert not result.retried
		assert sink.messages()[0] == "Working on it (moderate, up to 10m)"
		assert sink.updates[-1].type == UpdateType.COMPLETION
		assert telemetry == ["executor"]

		request_sent = executor.invoker.requests[0]
		assert request_sent.max_turns == 20
		assert request_sent.timeout == 0
		assert request_sent.model == agent_config().get("executor").model

		history = registry.completed_history()
		assert history[0].phase == AgentPhase.COMPLETED
		assert history[0].cost_usd == 0.01
		assert history[0].recent_output == ["Fixed the assertion"]
		registry.close()

	@pytest.mark.asyncio
	async def test_output_lines_reassembled_across_chunks(self, tmp_path):
		registry = AgentRegistry()
		output = "Reading src/app.py\nWrote tests/test_app.py\nAll done"
		invoker = FakeInvoker(lambda r: output, chunk_size=5)
		executor = Executor(invoker, agent_config(), registry, fast_settings())
		sink = RecordingSink()

		await executor.execute(1, request(), "msg", str(tmp_path), on_status=sink)

		history = registry.completed_history()
		assert history[0].recent_output == ["Reading src/app.py", "Wrote tests/test_app.py", "All done"]
		assert "Reading src/app.py" in sink.messages()
		assert "Editing tests/test_app.py" in sink.messages()
		registry.close()

	@pytest.mark.asyncio
	async def test_budget_follows_complexity(self, tmp_path):
		executor, registry = make_executor(lambda r: "ok")
		await executor.execute(1, request(Complexity.COMPLEX), "msg", str(tmp_path))
		assert executor.invoker.requests[0].max_turns == 50
		registry.close()

	@pytest.mark.asyncio
	async def test_transient_error_retried_once(self, tmp_path):
		results = iter([
			InvocationResult(result="API overloaded", is_error=True),
			InvocationResult(result="done", cost_usd=0.02),
		])
		executor, registry = make_executor(lambda r: next(results))
		sink = RecordingSink()

		result = await executor.execute(1, request(), "msg", str(tmp_path), on_status=sink)

		assert result.success
		assert result.retried
		assert len(executor.invoker.requests) == 2
		assert any("Transient error" in m for m in sink.messages())
		registry.close()

	@pytest.mark.asyncio
	async def test_permanent_error(self, tmp_path):
		def handler(r):
			raise CLIProcessError("unknown option --foo")

		executor, registry = make_executor(handler)
		result = await executor.execute(1, request(), "msg", str(tmp_path))

		assert not result.success
		assert result.result == "Executor error: unknown option --foo"
		assert len(executor.invoker.requests) == 1
		assert registry.completed_history()[0].phase == AgentPhase.FAILED
		registry.close()

	@pytest.mark.asyncio
	async def test_timeout(self, tmp_path, monkeypatch):
		monkeypatch.setattr(executor_module, "budget_for", lambda c: Budget(max_turns=5, timeout=0.05))
		executor, registry = make_executor(block_until_cancelled)
		sink = RecordingSink()

		result = await executor.execute(1, request(), "msg", str(tmp_path), on_status=sink)

		assert not result.success
		assert result.timed_out
		assert not result.cancelled
		assert result.result == "Executor timed out after 0s"
		assert "Execution timed out after 0s. Aborting." in sink.messages()
		registry.close()

	@pytest.mark.asyncio
	async def test_stall_kill(self, tmp_path):
		executor, registry = make_executor(
			block_until_cancelled,
			stall_check_interval=0.01,
			stall_warning=0.02,
			stall_kill=0.06,
		)
		sink = RecordingSink()

		result = await executor.execute(1, request(), "msg", str(tmp_path), on_status=sink)

		assert not result.success
		assert not result.cancelled
		assert result.result == "Executor was stopped after 0s without output"
		assert any(u.type == UpdateType.STALL for u in sink.updates)
		registry.close()

	@pytest.mark.asyncio
	async def test_caller_cancellation(self, tmp_path):
		executor, registry = make_executor(block_until_cancelled)
		cancellation = Cancellation()

		task = asyncio.create_task(
			executor.execute(1, request(), "msg", str(tmp_path), cancellation=cancellation)
		)
		await wait_for(lambda: executor.invoker.requests)
		cancellation.cancel("cancelled")
		result = await task

		assert result.cancelled
		assert result.result == "Executor was cancelled"
		assert registry.active_count() == 0
		registry.close()
