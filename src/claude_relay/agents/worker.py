"""Worker - runs one unit of an execution plan through the Claude CLI."""

import logging
import time
from typing import Optional

from ..cancellation import Cancellation
from ..config import AgentConfigManager
from ..errors import CLICancelledError
from ..invoker import ActivityHook, ClaudeInvoker, InvocationHook, InvocationRequest, OutputHook
from .models import UnitResult, UnitTask
from .prompts import build_worker_system_prompt

logger = logging.getLogger(__name__)


class Worker:
	"""Executes a single UnitTask. Failures come back as results, never as exceptions."""

	def __init__(self, invoker: ClaudeInvoker, agent_config: AgentConfigManager):
		self.invoker = invoker
		self.agent_config = agent_config

	async def run(
		self,
		task: UnitTask,
		cwd: str,
		cancellation: Optional[Cancellation] = None,
		on_invocation: Optional[InvocationHook] = None,
		on_activity: Optional[ActivityHook] = None,
		on_output: Optional[OutputHook] = None,
	) -> UnitResult:
		tier = self.agent_config.get("worker")
		start = time.monotonic()
		logger.info(f"Worker {task.id} starting: {task.description[:80]}")

		request = InvocationRequest(
			prompt=task.prompt,
			cwd=cwd,
			system_prompt=build_worker_system_prompt(task.description),
			model=tier.model,
			max_turns=tier.max_turns,
			timeout=tier.timeout,
			cancellation=cancellation,
		)

		try:
			result = await self.invoker.invoke(
				request,
				on_invocation=on_invocation,
				on_activity=on_activity,
				on_output=on_output,
			)
		except CLICancelledError:
			logger.info(f"Worker {task.id} cancelled")
			return UnitResult(
				task_id=task.id,
				success=False,
				result="Worker error: Cancelled",
				duration=time.monotonic() - start,
				cancelled=True,
			)
		except Exception as e:
			logger.error(f"Worker {task.id} failed: {e}")
			return UnitResult(
				task_id=task.id,
				success=False,
				result=f"Worker error: {e}",
				duration=time.monotonic() - start,
			)

		duration = time.monotonic() - start
		logger.info(
			f"Worker {task.id} finished in {duration:.1f}s "
			f"(error={result.is_error}, cost={result.cost_usd})"
		)
		return UnitResult(
			task_id=task.id,
			success=not result.is_error,
			result=result.result,
			cost_usd=result.cost_usd or 0.0,
			duration=duration,
		)
