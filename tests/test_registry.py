"""Tests for the live agent registry."""

import asyncio

import pytest

from claude_relay.agents.models import AgentPhase, AgentRole, UnitResult, WorkerAbortHandle
from claude_relay.agents.registry import AgentRegistry, RegistryEventType
from claude_relay.cancellation import Cancellation


def register_orchestrator(registry: AgentRegistry, conversation_id: int = 1) -> str:
	return registry.register(AgentRole.ORCHESTRATOR, conversation_id, "Refactor module", AgentPhase.PLANNING)


def add_handle(registry, orchestrator_id, number, agent_id=None) -> WorkerAbortHandle:
	handle = WorkerAbortHandle(
		cancellation=Cancellation(),
		task_prompt=f"prompt {number}",
		task_description=f"task {number}",
		worker_number=number,
		agent_id=agent_id,
	)
	registry.set_worker_handle(orchestrator_id, f"worker-{number}", handle)
	return handle


class TestEntries:
	"""Tests for registration, updates and copies."""

	def test_register_assigns_unique_ids(self):
		registry = AgentRegistry()
		first = register_orchestrator(registry)
		second = register_orchestrator(registry)

		assert first != second
		assert first.startswith("orchestrator-")
		entry = registry.get(first)
		assert entry.phase == AgentPhase.PLANNING
		assert entry.conversation_id == 1
		assert entry.started_at == entry.last_activity_at

	def test_returned_entries_are_copies(self):
		registry = AgentRegistry()
		agent_id = register_orchestrator(registry)

		entry = registry.get(agent_id)
		entry.description = "mutated"
		entry.recent_output.append("injected")

		fresh = registry.get(agent_id)
		assert fresh.description == "Refactor module"
		assert fresh.recent_output == []

	def test_update_merges_fields(self):
		registry = AgentRegistry()
		agent_id = register_orchestrator(registry)

		registry.update(agent_id, phase=AgentPhase.EXECUTING, progress="1/3")

		entry = registry.get(agent_id)
		assert entry.phase == AgentPhase.EXECUTING
		assert entry.progress == "1/3"

	def test_update_unknown_id_is_ignored(self):
		registry = AgentRegistry()
		registry.update("worker-99-abc", progress="x")

	def test_update_ignores_identity_fields(self):
		registry = AgentRegistry()
		agent_id = register_orchestrator(registry)

		registry.update(agent_id, id="other", parent_id="orchestrator-9", progress="1/2 tasks")

		entry = registry.get(agent_id)
		assert entry.id == agent_id
		assert entry.parent_id is None
		assert entry.progress == "1/2 tasks"
		assert registry.get("other") is None

	def test_update_identity_fields_on_unknown_id(self):
		registry = AgentRegistry()
		registry.update("worker-99-abc", parent_id="orchestrator-1", role=AgentRole.WORKER)
		assert registry.all_agents() == []

	def test_output_buffer_is_bounded(self):
		registry = AgentRegistry()
		agent_id = register_orchestrator(registry)

		registry.add_output(agent_id, [f"line {i}" for i in range(40)])
		registry.add_output(agent_id, "line 40\n\nline 41\n")

		output = registry.get(agent_id).recent_output
		assert len(output) == 30
		assert output[0] == "line 12"
		assert output[-1] == "line 41"

	def test_active_orchestrator_for_conversation(self):
		registry = AgentRegistry()
		orchestrator = register_orchestrator(registry, conversation_id=7)
		registry.register(AgentRole.WORKER, 7, "unit", AgentPhase.EXECUTING, parent_id=orchestrator)

		assert registry.active_orchestrator_for(7).id == orchestrator
		assert registry.active_orchestrator_for(8) is None
		assert registry.active_count() == 2


class TestEvents:
	"""Tests for change notifications."""

	def test_every_mutation_emits(self):
		registry = AgentRegistry(completed_ttl=0)
		events = []
		registry.subscribe(events.append)

		agent_id = register_orchestrator(registry)
		registry.update(agent_id, progress="half")
		registry.add_output(agent_id, "working")
		registry.complete(agent_id, success=False)
		registry.purge()

		assert [e.type for e in events] == [
			RegistryEventType.REGISTERED,
			RegistryEventType.UPDATED,
			RegistryEventType.OUTPUT,
			RegistryEventType.FAILED,
			RegistryEventType.REMOVED,
		]
		assert events[-1].to_dict()["type"] == "agent-removed"

	def test_unsubscribe(self):
		registry = AgentRegistry()
		events = []
		unsubscribe = registry.subscribe(events.append)
		assert registry.listener_count == 1

		unsubscribe()
		register_orchestrator(registry)

		assert events == []
		assert registry.listener_count == 0

	def test_failing_listener_does_not_break_others(self):
		registry = AgentRegistry()
		events = []

		def broken(event):
			raise RuntimeError("boom")

		registry.subscribe(broken)
		registry.subscribe(events.append)
		register_orchestrator(registry)

		assert len(events) == 1

	def test_event_agent_is_a_copy(self):
		registry = AgentRegistry()
		events = []
		registry.subscribe(events.append)
		agent_id = register_orchestrator(registry)

		events[0].agent.description = "changed"
		assert registry.get(agent_id).description == "Refactor module"


class TestCompletion:
	"""Tests for completion, history and removal."""

	def test_complete_records_history(self):
		registry = AgentRegistry()
		agent_id = register_orchestrator(registry)

		registry.complete(agent_id, success=True, cost_usd=0.25)

		entry = registry.get(agent_id)
		assert entry.phase == AgentPhase.COMPLETED
		assert entry.success is True
		assert entry.cost_usd == 0.25
		assert entry.completed_at is not None
		history = registry.completed_history()
		assert [h.id for h in history] == [agent_id]
		assert registry.active_count() == 0

	def test_history_is_bounded(self):
		registry = AgentRegistry(max_completed_history=3)
		for _ in range(5):
			registry.complete(register_orchestrator(registry), success=True)

		assert len(registry.completed_history()) == 3

	@pytest.mark.asyncio
	async def test_completed_entries_removed_after_ttl(self):
		registry = AgentRegistry(completed_ttl=0.02)
		agent_id = register_orchestrator(registry)
		registry.complete(agent_id, success=True)

		assert registry.get(agent_id) is not None
		await asyncio.sleep(0.06)

		assert registry.get(agent_id) is None
		assert registry.snapshot()["recently_completed"][0]["id"] == agent_id
		registry.close()

	def test_purge_drops_orchestrator_handles(self):
		registry = AgentRegistry()
		orchestrator = register_orchestrator(registry)
		add_handle(registry, orchestrator, 1)

		async def handler(number):
			return None

		registry.set_retry_handler(orchestrator, handler)
		registry.complete(orchestrator, success=False)

		assert registry.purge() == 1
		assert registry.workers_for(orchestrator) == {}
		assert not registry.has_retry_handler(orchestrator)

	def test_snapshot_shape(self):
		registry = AgentRegistry()
		register_orchestrator(registry)

		snapshot = registry.snapshot()

		assert set(snapshot) == {"agents", "recently_completed", "timestamp"}
		assert snapshot["agents"][0]["role"] == "orchestrator"
		assert snapshot["agents"][0]["phase"] == "planning"


class TestWorkerHandles:
	"""Tests for per-worker kill and retry."""

	def test_kill_worker_by_number_spares_siblings(self):
		registry = AgentRegistry()
		orchestrator = register_orchestrator(registry)
		first = add_handle(registry, orchestrator, 1)
		second = add_handle(registry, orchestrator, 2)

		killed = registry.kill_worker(orchestrator, 2)

		assert killed is second
		assert second.cancellation.cancelled
		assert second.cancellation.reason == "killed"
		assert not first.cancellation.cancelled

	def test_kill_unknown_worker(self):
		registry = AgentRegistry()
		orchestrator = register_orchestrator(registry)
		assert registry.kill_worker(orchestrator, 3) is None

	def test_retryable_only_when_failed(self):
		registry = AgentRegistry()
		orchestrator = register_orchestrator(registry)
		worker = registry.register(AgentRole.WORKER, 1, "unit", AgentPhase.EXECUTING, parent_id=orchestrator)
		add_handle(registry, orchestrator, 1, agent_id=worker)

		assert registry.retryable_worker(orchestrator, 1) is None
		registry.complete(worker, success=False)
		assert registry.retryable_worker(orchestrator, 1)[0] == "worker-1"

	def test_remove_and_clear_handles(self):
		registry = AgentRegistry()
		orchestrator = register_orchestrator(registry)
		add_handle(registry, orchestrator, 1)
		add_handle(registry, orchestrator, 2)

		registry.remove_worker_handle(orchestrator, "worker-1")
		assert list(registry.workers_for(orchestrator)) == ["worker-2"]
		registry.clear_worker_handles(orchestrator)
		assert registry.get_worker_handle(orchestrator, "worker-2") is None

	@pytest.mark.asyncio
	async def test_retry_worker_uses_handler(self):
		registry = AgentRegistry()
		orchestrator = register_orchestrator(registry)
		calls = []

		async def handler(number):
			calls.append(number)
			return UnitResult(task_id="worker-2-retry", success=True, result="done")

		assert await registry.retry_worker(orchestrator, 2) is None
		registry.set_retry_handler(orchestrator, handler)
		result = await registry.retry_worker(orchestrator, 2)

		assert calls == [2]
		assert result.success
		registry.clear_retry_handler(orchestrator)
		assert not registry.has_retry_handler(orchestrator)
