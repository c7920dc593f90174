"""Agents module - chat routing, supervision strategies, workers, and the live registry."""

from .chat import ChatAgent, parse_chat_response
from .executor import Executor
from .models import (
	AgentEntry,
	AgentPhase,
	AgentRole,
	ChatResponse,
	Complexity,
	ExecutionPlan,
	ExecutorResult,
	RunSummary,
	StatusUpdate,
	UnitResult,
	UnitTask,
	UpdateType,
	WorkerAbortHandle,
	WorkRequest,
)
from .orchestrator import Orchestrator
from .planning import parse_plan, truncate_plan
from .registry import AgentRegistry, RegistryEvent, RegistryEventType
from .worker import Worker

__all__ = [
	"ChatAgent",
	"parse_chat_response",
	"Executor",
	"Orchestrator",
	"Worker",
	"AgentRegistry",
	"RegistryEvent",
	"RegistryEventType",
	"parse_plan",
	"truncate_plan",
	"AgentEntry",
	"AgentPhase",
	"AgentRole",
	"ChatResponse",
	"Complexity",
	"ExecutionPlan",
	"ExecutorResult",
	"RunSummary",
	"StatusUpdate",
	"UnitResult",
	"UnitTask",
	"UpdateType",
	"WorkerAbortHandle",
	"WorkRequest",
]
