"""
Agent Registry - In-memory directory of running orchestrators and workers.

Responsibilities:
- Track every supervision unit with phase, progress and recent output
- Keep a bounded history of completed units
- Hold per-worker abort handles so single units can be killed or retried
- Push a change event to subscribers on every mutation

The registry is constructed explicitly and passed to the components that
use it. All entries handed out are copies.
"""

import asyncio
import dataclasses
import itertools
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from .models import AgentEntry, AgentPhase, AgentRole, UnitResult, WorkerAbortHandle

logger = logging.getLogger(__name__)

MAX_OUTPUT_LINES = 30
MAX_COMPLETED_HISTORY = 50
COMPLETED_TTL = 300.0  # seconds an entry stays live after completion

UPDATABLE_FIELDS = {
	"phase",
	"progress",
	"last_activity_at",
	"success",
	"cost_usd",
	"completed_at",
	"description",
}


class RegistryEventType(str, Enum):
	REGISTERED = "agent-registered"
	UPDATED = "agent-updated"
	OUTPUT = "agent-output"
	COMPLETED = "agent-completed"
	FAILED = "agent-failed"
	REMOVED = "agent-removed"


@dataclass
class RegistryEvent:
	"""A change notification carrying a copy of the affected entry."""
	type: RegistryEventType
	agent: AgentEntry
	timestamp: float

	def to_dict(self) -> dict:
		return {
			"type": self.type.value,
			"agent": self.agent.to_dict(),
			"timestamp": self.timestamp,
		}


RegistryListener = Callable[[RegistryEvent], None]
RetryHandler = Callable[[int], Awaitable[Optional[UnitResult]]]


def _copy(entry: AgentEntry) -> AgentEntry:
	return dataclasses.replace(entry, recent_output=list(entry.recent_output))


class AgentRegistry:
	"""Live view of all supervision units in this process."""

	def __init__(
		self,
		max_output_lines: int = MAX_OUTPUT_LINES,
		max_completed_history: int = MAX_COMPLETED_HISTORY,
		completed_ttl: float = COMPLETED_TTL,
	):
		self.max_output_lines = max_output_lines
		self.completed_ttl = completed_ttl
		self._agents: dict[str, AgentEntry] = {}
		self._completed: deque[AgentEntry] = deque(maxlen=max_completed_history)
		# orchestrator id -> worker id -> handle
		self._worker_handles: dict[str, dict[str, WorkerAbortHandle]] = {}
		self._retry_handlers: dict[str, RetryHandler] = {}
		self._listeners: list[RegistryListener] = []
		self._removal_timers: dict[str, asyncio.TimerHandle] = {}
		self._counter = itertools.count(1)

	# ==================== Subscriptions ====================

	def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
		"""Register a change listener. Returns a function that unsubscribes it."""
		self._listeners.append(listener)

		def unsubscribe() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return unsubscribe

	@property
	def listener_count(self) -> int:
		return len(self._listeners)

	def _emit(self, event_type: RegistryEventType, agent: AgentEntry) -> None:
		event = RegistryEvent(type=event_type, agent=_copy(agent), timestamp=time.time())
		for listener in list(self._listeners):
			try:
				listener(event)
			except Exception as e:
				logger.error(f"Registry listener failed on {event_type.value}: {e}")

	# ==================== Lifecycle ====================

	def generate_id(self, role: AgentRole) -> str:
		return f"{role.value}-{next(self._counter)}-{uuid.uuid4().hex[:6]}"

	def register(
		self,
		role: AgentRole,
		conversation_id: int,
		description: str,
		phase: AgentPhase,
		parent_id: Optional[str] = None,
	) -> str:
		"""Add a new entry and return its id."""
		agent_id = self.generate_id(role)
		now = time.time()
		entry = AgentEntry(
			id=agent_id,
			role=role,
			conversation_id=conversation_id,
			description=description,
			phase=phase,
			started_at=now,
			last_activity_at=now,
			parent_id=parent_id,
		)
		self._agents[agent_id] = entry
		self._emit(RegistryEventType.REGISTERED, entry)
		logger.info(f"Agent registered: {agent_id} ({role.value}) {description[:60]}")
		return agent_id

	def update(self, agent_id: str, **changes) -> None:
		"""Merge field changes into an entry. Unknown ids and identity fields are ignored."""
		unknown = set(changes) - UPDATABLE_FIELDS
		if unknown:
			logger.warning(f"Ignoring non-updatable fields for {agent_id}: {', '.join(sorted(unknown))}")
			changes = {name: value for name, value in changes.items() if name not in unknown}

		entry = self._agents.get(agent_id)
		if entry is None:
			return

		for name, value in changes.items():
			setattr(entry, name, value)
		if changes.get("last_activity_at") is None:
			entry.last_activity_at = time.time()

		self._emit(RegistryEventType.UPDATED, entry)

	def add_output(self, agent_id: str, lines: str | list[str]) -> None:
		"""Append lines to an entry's rolling output buffer."""
		entry = self._agents.get(agent_id)
		if entry is None:
			return

		if isinstance(lines, str):
			lines = [line for line in lines.split("\n") if line.strip()]
		entry.recent_output.extend(lines)
		overflow = len(entry.recent_output) - self.max_output_lines
		if overflow > 0:
			del entry.recent_output[:overflow]
		entry.last_activity_at = time.time()

		self._emit(RegistryEventType.OUTPUT, entry)

	def complete(self, agent_id: str, success: bool, cost_usd: Optional[float] = None) -> None:
		"""Finalize an entry, snapshot it into history and schedule its removal."""
		entry = self._agents.get(agent_id)
		if entry is None:
			return

		now = time.time()
		entry.phase = AgentPhase.COMPLETED if success else AgentPhase.FAILED
		entry.success = success
		entry.completed_at = now
		entry.last_activity_at = now
		if cost_usd is not None:
			entry.cost_usd = cost_usd

		self._emit(
			RegistryEventType.COMPLETED if success else RegistryEventType.FAILED,
			entry,
		)
		logger.info(f"Agent completed: {agent_id} success={success} cost={cost_usd}")

		self._completed.append(_copy(entry))
		self._schedule_removal(agent_id)

	def _schedule_removal(self, agent_id: str) -> None:
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			logger.debug(f"No running loop, {agent_id} stays live until purge()")
			return
		previous = self._removal_timers.pop(agent_id, None)
		if previous is not None:
			previous.cancel()
		self._removal_timers[agent_id] = loop.call_later(
			self.completed_ttl, self._remove, agent_id
		)

	def _remove(self, agent_id: str) -> None:
		self._removal_timers.pop(agent_id, None)
		entry = self._agents.pop(agent_id, None)
		if entry is None:
			return
		if entry.role == AgentRole.ORCHESTRATOR:
			self._worker_handles.pop(agent_id, None)
			self._retry_handlers.pop(agent_id, None)
		self._emit(RegistryEventType.REMOVED, entry)

	def purge(self) -> int:
		"""Remove every completed entry now. Returns how many were removed."""
		finished = [a.id for a in self._agents.values() if a.phase.is_terminal]
		for agent_id in finished:
			timer = self._removal_timers.pop(agent_id, None)
			if timer is not None:
				timer.cancel()
			self._remove(agent_id)
		return len(finished)

	def close(self) -> None:
		"""Cancel pending removal timers."""
		for timer in self._removal_timers.values():
			timer.cancel()
		self._removal_timers.clear()

	# ==================== Queries ====================

	def get(self, agent_id: str) -> Optional[AgentEntry]:
		entry = self._agents.get(agent_id)
		return _copy(entry) if entry else None

	def snapshot(self) -> dict:
		return {
			"agents": [a.to_dict() for a in self._agents.values()],
			"recently_completed": [a.to_dict() for a in self._completed],
			"timestamp": time.time(),
		}

	def all_agents(self) -> list[AgentEntry]:
		return [_copy(a) for a in self._agents.values()]

	def active_agents(self) -> list[AgentEntry]:
		return [_copy(a) for a in self._agents.values() if not a.phase.is_terminal]

	def completed_history(self) -> list[AgentEntry]:
		return [_copy(a) for a in self._completed]

	def active_count(self) -> int:
		return sum(1 for a in self._agents.values() if not a.phase.is_terminal)

	def active_orchestrator_for(self, conversation_id: int) -> Optional[AgentEntry]:
		"""First non-terminal orchestrator of a conversation."""
		for entry in self._agents.values():
			if (
				entry.role == AgentRole.ORCHESTRATOR
				and entry.conversation_id == conversation_id
				and not entry.phase.is_terminal
			):
				return _copy(entry)
		return None

	# ==================== Worker handles ====================

	def set_worker_handle(self, orchestrator_id: str, worker_id: str, handle: WorkerAbortHandle) -> None:
		self._worker_handles.setdefault(orchestrator_id, {})[worker_id] = handle

	def get_worker_handle(self, orchestrator_id: str, worker_id: str) -> Optional[WorkerAbortHandle]:
		return self._worker_handles.get(orchestrator_id, {}).get(worker_id)

	def remove_worker_handle(self, orchestrator_id: str, worker_id: str) -> None:
		self._worker_handles.get(orchestrator_id, {}).pop(worker_id, None)

	def clear_worker_handles(self, orchestrator_id: str) -> None:
		self._worker_handles.pop(orchestrator_id, None)

	def workers_for(self, orchestrator_id: str) -> dict[str, WorkerAbortHandle]:
		return dict(self._worker_handles.get(orchestrator_id, {}))

	def worker_by_number(
		self,
		orchestrator_id: str,
		worker_number: int,
	) -> Optional[tuple[str, WorkerAbortHandle]]:
		"""Find a worker by its 1-based ordinal within an orchestrator."""
		for worker_id, handle in self._worker_handles.get(orchestrator_id, {}).items():
			if handle.worker_number == worker_number:
				return worker_id, handle
		return None

	def kill_worker(self, orchestrator_id: str, worker_number: int) -> Optional[WorkerAbortHandle]:
		"""Cancel one worker without touching its siblings."""
		found = self.worker_by_number(orchestrator_id, worker_number)
		if found is None:
			return None
		worker_id, handle = found
		handle.cancellation.cancel("killed")
		logger.info(f"Worker #{worker_number} ({worker_id}) of {orchestrator_id} killed")
		return handle

	def retryable_worker(
		self,
		orchestrator_id: str,
		worker_number: int,
	) -> Optional[tuple[str, WorkerAbortHandle]]:
		"""A worker that may be retried: known by ordinal and no longer running."""
		found = self.worker_by_number(orchestrator_id, worker_number)
		if found is None:
			return None
		entry = self._agents.get(found[1].agent_id) if found[1].agent_id else None
		if entry is not None and entry.phase != AgentPhase.FAILED:
			return None
		return found

	# ==================== Retry handlers ====================

	def set_retry_handler(self, orchestrator_id: str, handler: RetryHandler) -> None:
		self._retry_handlers[orchestrator_id] = handler

	def clear_retry_handler(self, orchestrator_id: str) -> None:
		self._retry_handlers.pop(orchestrator_id, None)

	def has_retry_handler(self, orchestrator_id: str) -> bool:
		return orchestrator_id in self._retry_handlers

	async def retry_worker(self, orchestrator_id: str, worker_number: int) -> Optional[UnitResult]:
		"""Re-run a failed or killed worker of an active run."""
		handler = self._retry_handlers.get(orchestrator_id)
		if handler is None:
			return None
		return await handler(worker_number)
