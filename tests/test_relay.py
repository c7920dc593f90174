"""Tests for message routing, chat locks and the transport helpers."""

import json
from pathlib import Path

import pytest

from claude_relay.agents.models import StatusUpdate, UpdateType
from claude_relay.agents.prompts import ACTION_TAG, SUMMARY_SYSTEM_PROMPT
from claude_relay.cancellation import Cancellation
from claude_relay.config import Config
from claude_relay.errors import CLIProcessError, CLIRateLimitError, CLITimeoutError
from claude_relay.relay import ChatLocks, Relay, describe_error, format_status
from claude_relay.sessions import ProjectStore, SessionStore
from claude_relay.telegram_bot import _parse_worker_number, split_message
from claude_relay.telemetry import InvocationLog
from tests.helpers import FakeInvoker, agent_config, fast_settings, plan_json, unit


def action(task: str, complexity: str = "trivial") -> str:
	block = json.dumps({"type": "work_request", "task": task, "context": "", "urgency": "quick", "complexity": complexity})
	return f"On it.\n<{ACTION_TAG}>\n{block}\n</{ACTION_TAG}>"


def is_chat(request) -> bool:
	return "user-facing assistant" in (request.system_prompt or "")


def make_relay(tmp_path: Path, handler, strategy: str = "plan") -> Relay:
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data", strategy=strategy)
	config.supervision = fast_settings()
	return Relay(
		config,
		invoker=FakeInvoker(handler),
		agent_config=agent_config(),
		sessions=SessionStore(tmp_path / "sessions.json"),
		projects=ProjectStore(tmp_path / "projects.json", default_dir=tmp_path),
		invocation_log=InvocationLog(tmp_path / "invocations.json"),
	)


class Replies:
	def __init__(self):
		self.messages = []

	async def __call__(self, text: str) -> None:
		self.messages.append(text)


class TestHandleMessage:
	"""Tests for Relay.handle_message."""

	@pytest.mark.asyncio
	async def test_plain_chat(self, tmp_path):
		relay = make_relay(tmp_path, lambda r: "Hi there!")
		replies = Replies()

		await relay.handle_message(1, "hello", replies)

		assert replies.messages == ["Hi there!"]
		assert relay.sessions.get_session_id(1) == "sess-1"
		assert [e.tier for e in relay.invocation_log.recent()] == ["chat"]
		assert relay.invoker.requests[0].cwd == str(tmp_path)

	@pytest.mark.asyncio
	async def test_work_through_orchestrator(self, tmp_path):
		def handler(request):
			if is_chat(request):
				return action("Run the tests")
			if request.system_prompt == SUMMARY_SYSTEM_PROMPT:
				return "Tests pass."
			if request.allowed_tools == "":
				return plan_json(unit("tests"))
			return "42 passed"

		relay = make_relay(tmp_path, handler)
		replies = Replies()

		await relay.handle_message(1, "run the tests please", replies)

		assert replies.messages[0] == "On it."
		assert "Plan: Test plan [0/1 tasks]" in replies.messages
		assert replies.messages[-1] == "Tests pass."
		tiers = [e.tier for e in relay.invocation_log.recent()]
		assert tiers == ["chat", "orchestrator", "worker", "orchestrator"]
		relay.registry.close()

	@pytest.mark.asyncio
	async def test_work_through_executor(self, tmp_path):
		def handler(request):
			if is_chat(request):
				return action("List files")
			return "README.md setup.py"

		relay = make_relay(tmp_path, handler, strategy="direct")
		replies = Replies()

		await relay.handle_message(1, "ls", replies)

		assert replies.messages[0] == "On it."
		assert replies.messages[1].startswith("Working on it (trivial")
		assert replies.messages[-1] == "README.md setup.py"
		assert relay.invoker.requests[1].max_turns == 5
		relay.registry.close()

	@pytest.mark.asyncio
	async def test_executor_failure_is_labelled(self, tmp_path):
		def handler(request):
			if is_chat(request):
				return action("Deploy")
			raise CLIProcessError("permission denied")

		relay = make_relay(tmp_path, handler, strategy="direct")
		replies = Replies()

		await relay.handle_message(1, "deploy", replies)

		assert replies.messages[-1] == "Work failed: Executor error: permission denied"
		relay.registry.close()

	@pytest.mark.asyncio
	async def test_chat_failure_becomes_reply(self, tmp_path):
		def handler(request):
			raise CLIRateLimitError("Rate limited: 429")

		relay = make_relay(tmp_path, handler)
		replies = Replies()

		await relay.handle_message(1, "hello", replies)

		assert replies.messages == ["Claude is rate limited. Please wait a moment and try again."]

	@pytest.mark.asyncio
	async def test_cancelled_before_start_stays_quiet(self, tmp_path):
		relay = make_relay(tmp_path, lambda r: "never sent")
		cancellation = Cancellation()
		cancellation.cancel("cancelled")
		replies = Replies()

		await relay.handle_message(1, "hello", replies, cancellation=cancellation)

		assert replies.messages == []

	@pytest.mark.asyncio
	async def test_uses_active_project(self, tmp_path):
		project = tmp_path / "api"
		project.mkdir()
		relay = make_relay(tmp_path, lambda r: "ok")
		relay.projects.add("api", str(project))
		relay.projects.switch(1, "api")

		await relay.handle_message(1, "hello", Replies())

		assert relay.invoker.requests[0].cwd == str(project.resolve())


class TestChatLocks:
	"""Tests for per-conversation locking."""

	def test_lock_and_unlock(self):
		locks = ChatLocks()
		cancellation = locks.lock(1)

		assert locks.is_locked(1)
		assert not locks.is_locked(2)
		locks.unlock(1, cancellation)
		assert not locks.is_locked(1)

	def test_new_lock_supersedes(self):
		locks = ChatLocks()
		first = locks.lock(1)
		second = locks.lock(1)

		assert first.cancelled
		assert first.reason == "superseded"
		assert not second.cancelled
		# a stale holder cannot release the newer lock
		locks.unlock(1, first)
		assert locks.is_locked(1)

	def test_cancel(self):
		locks = ChatLocks()
		cancellation = locks.lock(1)

		assert locks.cancel(1)
		assert cancellation.reason == "cancelled"
		assert not locks.cancel(1)
		assert not locks.cancel(2)

	def test_cancel_all(self):
		locks = ChatLocks()
		handles = [locks.lock(i) for i in range(3)]
		assert locks.cancel_all() == 3
		assert all(h.cancelled for h in handles)


def test_describe_error():
	assert describe_error(CLIRateLimitError("Rate limited: x")).startswith("Claude is rate limited")
	assert describe_error(CLITimeoutError("Claude CLI timed out after 30s")).startswith("Request timed out")
	assert describe_error(CLIProcessError("exit 1")) == "Error: exit 1"


def test_format_status():
	assert format_status(StatusUpdate(type=UpdateType.STATUS, message="Planning")) == "Planning"
	assert format_status(StatusUpdate(type=UpdateType.PLAN, message="Plan: two steps", progress="0/2 tasks")) == (
		"Plan: two steps [0/2 tasks]"
	)
	assert format_status(StatusUpdate(type=UpdateType.STALL, message="Worker #1 is active again.")) == (
		"Warning: Worker #1 is active again."
	)


def test_split_message():
	assert split_message("short") == ["short"]
	text = "\n".join(["x" * 30] * 10)
	chunks = split_message(text, limit=100)
	assert all(len(c) <= 100 for c in chunks)
	assert "".join(chunks).replace("\n", "") == text.replace("\n", "")
	assert split_message("y" * 250, limit=100) == ["y" * 100, "y" * 100, "y" * 50]


def test_parse_worker_number():
	assert _parse_worker_number(["3"]) == 3
	assert _parse_worker_number([]) is None
	assert _parse_worker_number(["zero"]) is None
	assert _parse_worker_number(["0"]) is None
