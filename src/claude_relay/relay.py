"""
Relay - wires the chat agent, the supervision strategies and the stores together.

Transports (the Telegram bot, the terminal) hand every incoming message to
Relay.handle_message along with a reply callback.
"""

import logging
from typing import Awaitable, Callable, Optional

from .agents.chat import ChatAgent
from .agents.executor import Executor
from .agents.models import StatusUpdate, UpdateType
from .agents.orchestrator import Orchestrator
from .agents.registry import AgentRegistry
from .cancellation import Cancellation
from .config import AgentConfigManager, Config
from .errors import CLICancelledError, CLIRateLimitError, CLITimeoutError
from .invoker import ClaudeInvoker
from .sessions import ProjectStore, SessionStore
from .telemetry import InvocationLog

logger = logging.getLogger(__name__)

Reply = Callable[[str], Awaitable[None]]

STATUS_PREFIX = {
	UpdateType.PLAN: "Plan",
	UpdateType.STALL: "Warning",
	UpdateType.HEARTBEAT: "...",
}


def format_status(update: StatusUpdate) -> str:
	prefix = STATUS_PREFIX.get(update.type)
	text = update.message if prefix is None or update.message.startswith(prefix) else f"{prefix}: {update.message}"
	return f"{text} [{update.progress}]" if update.progress else text


def describe_error(error: Exception) -> str:
	"""User-facing text for a failure that escaped the supervision core."""
	message = str(error)
	if isinstance(error, CLIRateLimitError) or "rate limited" in message.lower():
		return "Claude is rate limited. Please wait a moment and try again."
	if isinstance(error, CLITimeoutError) or "timed out" in message.lower():
		return "Request timed out. Try a simpler question or increase the timeout."
	return f"Error: {message}"


class ChatLocks:
	"""One in-flight request per conversation, each with its own cancellation."""

	def __init__(self):
		self._active: dict[int, Cancellation] = {}

	def is_locked(self, conversation_id: int) -> bool:
		return conversation_id in self._active

	def lock(self, conversation_id: int) -> Cancellation:
		"""Claim the conversation. A previous holder is cancelled."""
		previous = self._active.get(conversation_id)
		if previous is not None:
			previous.cancel("superseded")
		cancellation = Cancellation()
		self._active[conversation_id] = cancellation
		return cancellation

	def unlock(self, conversation_id: int, cancellation: Cancellation) -> None:
		if self._active.get(conversation_id) is cancellation:
			del self._active[conversation_id]

	def cancel(self, conversation_id: int) -> bool:
		cancellation = self._active.get(conversation_id)
		if cancellation is None:
			return False
		return cancellation.cancel("cancelled")

	def cancel_all(self) -> int:
		return sum(1 for conversation_id in list(self._active) if self.cancel(conversation_id))


class Relay:
	"""Routes messages to chat or to work, and reports back through a reply callback."""

	def __init__(
		self,
		config: Config,
		invoker: Optional[ClaudeInvoker] = None,
		agent_config: Optional[AgentConfigManager] = None,
		registry: Optional[AgentRegistry] = None,
		sessions: Optional[SessionStore] = None,
		projects: Optional[ProjectStore] = None,
		invocation_log: Optional[InvocationLog] = None,
		persona: str = "",
	):
		self.config = config
		self.invoker = invoker or ClaudeInvoker.from_config(config)
		self.agent_config = agent_config or AgentConfigManager(config.agent_config_file)
		self.registry = registry or AgentRegistry()
		self.sessions = sessions or SessionStore(config.sessions_file)
		self.projects = projects or ProjectStore(config.projects_file, config.default_project_dir)
		self.invocation_log = invocation_log or InvocationLog(config.invocations_file)
		self.locks = ChatLocks()

		self.chat_agent = ChatAgent(self.invoker, self.agent_config, self.sessions, persona)
		self.executor = Executor(self.invoker, self.agent_config, self.registry, config.supervision)
		self.orchestrator = Orchestrator(self.invoker, self.agent_config, self.registry, config.supervision)

	def load(self) -> None:
		"""Load persisted stores."""
		self.agent_config.load()
		self.sessions.load()
		self.projects.load()
		self.invocation_log.load()

	def _telemetry(self, conversation_id: int):
		def record(raw: object, tier: str) -> None:
			self.invocation_log.record(raw, conversation_id, tier)
		return record

	async def handle_message(
		self,
		conversation_id: int,
		text: str,
		reply: Reply,
		cancellation: Optional[Cancellation] = None,
	) -> None:
		"""Answer one message. All failures end up as a reply, cancellation stays quiet."""
		cwd = self.projects.get_active_project_dir(conversation_id)
		telemetry = self._telemetry(conversation_id)
		logger.info(f"Message from {conversation_id} ({len(text)} chars) in {cwd}")

		try:
			response = await self.chat_agent.classify(
				conversation_id,
				text,
				cwd,
				cancellation=cancellation,
				on_invocation=lambda raw: telemetry(raw, "chat"),
			)
		except CLICancelledError:
			logger.info(f"Request from {conversation_id} cancelled")
			return
		except Exception as e:
			logger.error(f"Chat agent failed for {conversation_id}: {e}")
			await reply(describe_error(e))
			return

		await reply(response.chat_text or "(empty response)")
		work_request = response.work_request
		if work_request is None:
			return

		async def on_status(update: StatusUpdate) -> None:
			# The final result is sent separately
			if update.type != UpdateType.COMPLETION:
				await reply(format_status(update))

		logger.info(
			f"Work request from {conversation_id} ({self.config.strategy}, "
			f"{work_request.complexity.value}): {work_request.task[:80]}"
		)
		if self.config.strategy == "direct":
			result = await self.executor.execute(
				conversation_id,
				work_request,
				text,
				cwd,
				cancellation=cancellation,
				on_status=on_status,
				on_invocation=telemetry,
			)
			if not result.cancelled:
				await reply(result.result if result.success else f"Work failed: {result.result}")
		else:
			summary = await self.orchestrator.execute(
				conversation_id,
				work_request,
				cwd,
				cancellation=cancellation,
				on_status=on_status,
				on_invocation=telemetry,
			)
			if not summary.cancelled:
				await reply(summary.summary)
