"""Data models shared by the chat agent, supervisors, workers and registry."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..cancellation import Cancellation
from ..invoker import InvocationResult


class Complexity(str, Enum):
	"""How much budget a work request gets."""
	TRIVIAL = "trivial"
	MODERATE = "moderate"
	COMPLEX = "complex"


class AgentRole(str, Enum):
	ORCHESTRATOR = "orchestrator"
	WORKER = "worker"


class AgentPhase(str, Enum):
	"""Lifecycle phase of a registry entry."""
	PLANNING = "planning"
	EXECUTING = "executing"
	SUMMARIZING = "summarizing"
	COMPLETED = "completed"
	FAILED = "failed"

	@property
	def is_terminal(self) -> bool:
		return self in (AgentPhase.COMPLETED, AgentPhase.FAILED)


class UpdateType(str, Enum):
	"""Kinds of progress updates sent to the status sink."""
	STATUS = "status"
	HEARTBEAT = "heartbeat"
	STALL = "stall"
	PLAN = "plan"
	UNIT_COMPLETE = "unit_complete"
	COMPLETION = "completion"


@dataclass
class WorkRequest:
	"""A unit of real work extracted from a chat message."""
	task: str
	context: str = ""
	urgency: str = "normal"  # normal, quick
	complexity: Complexity = Complexity.MODERATE

	@classmethod
	def from_dict(cls, data: dict) -> "WorkRequest":
		urgency = str(data.get("urgency") or "normal")
		raw_complexity = data.get("complexity")
		try:
			complexity = Complexity(raw_complexity)
		except ValueError:
			complexity = Complexity.TRIVIAL if urgency == "quick" else Complexity.MODERATE
		return cls(
			task=str(data["task"]),
			context=str(data.get("context") or ""),
			urgency=urgency,
			complexity=complexity,
		)


@dataclass
class UnitTask:
	"""One delegated piece of a plan."""
	id: str
	description: str
	prompt: str
	depends_on: list[str] = field(default_factory=list)

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"description": self.description,
			"prompt": self.prompt,
			"dependsOn": list(self.depends_on),
		}


@dataclass
class ExecutionPlan:
	"""Decomposition produced by the planning phase."""
	summary: str
	workers: list[UnitTask]
	sequential: bool = False
	type: str = "plan"

	def to_dict(self) -> dict:
		return {
			"type": self.type,
			"summary": self.summary,
			"workers": [w.to_dict() for w in self.workers],
			"sequential": self.sequential,
		}

	def to_json(self) -> str:
		return json.dumps(self.to_dict())


@dataclass
class UnitResult:
	"""Outcome of one unit run by a worker."""
	task_id: str
	success: bool
	result: str
	cost_usd: float = 0.0
	duration: float = 0.0
	cancelled: bool = False


@dataclass
class RunSummary:
	"""Aggregate outcome of a plan-then-delegate run."""
	overall_success: bool
	summary: str
	unit_results: list[UnitResult] = field(default_factory=list)
	total_cost_usd: float = 0.0
	cancelled: bool = False
	timed_out: bool = False
	plan: Optional[ExecutionPlan] = None


@dataclass
class ExecutorResult:
	"""Outcome of a direct-execution run."""
	success: bool
	result: str
	cost_usd: float = 0.0
	duration: float = 0.0
	cancelled: bool = False
	timed_out: bool = False
	retried: bool = False


@dataclass
class StatusUpdate:
	"""Progress narration for the user."""
	type: UpdateType
	message: str
	progress: Optional[str] = None
	important: bool = False


@dataclass
class ChatResponse:
	"""What the chat agent decided for one message."""
	chat_text: str
	work_request: Optional[WorkRequest]
	invocation: Optional[InvocationResult] = None


@dataclass
class AgentEntry:
	"""Registry record for one orchestrator or worker."""
	id: str
	role: AgentRole
	conversation_id: int
	description: str
	phase: AgentPhase
	started_at: float
	last_activity_at: float
	completed_at: Optional[float] = None
	parent_id: Optional[str] = None
	success: Optional[bool] = None
	cost_usd: Optional[float] = None
	progress: Optional[str] = None
	recent_output: list[str] = field(default_factory=list)

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"role": self.role.value,
			"conversation_id": self.conversation_id,
			"description": self.description,
			"phase": self.phase.value,
			"started_at": self.started_at,
			"last_activity_at": self.last_activity_at,
			"completed_at": self.completed_at,
			"parent_id": self.parent_id,
			"success": self.success,
			"cost_usd": self.cost_usd,
			"progress": self.progress,
			"recent_output": list(self.recent_output),
		}


@dataclass
class WorkerAbortHandle:
	"""Cancellation and retry info for one running unit."""
	cancellation: Cancellation
	task_prompt: str
	task_description: str
	worker_number: int
	agent_id: Optional[str] = None
