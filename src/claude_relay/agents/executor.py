"""
Executor - the direct strategy.

Runs a whole work request as one long Claude invocation with the executor
tier's tools, under a complexity budget, a watchdog and one transient retry.
"""

import asyncio
import logging
import time
from typing import Optional

from ..cancellation import Cancellation
from ..config import AgentConfigManager, SupervisionSettings
from ..errors import CLICancelledError
from ..invoker import ClaudeInvoker, InvocationRequest, InvocationResult
from .models import AgentPhase, AgentRole, ExecutorResult, StatusUpdate, UpdateType, WorkRequest
from .monitor import (
	StatusSink,
	LineBuffer,
	StatusThrottle,
	TelemetrySink,
	Watchdog,
	budget_for,
	call_with_transient_retry,
	describe_output_line,
	format_duration,
)
from .prompts import build_executor_system_prompt
from .registry import AgentRegistry

logger = logging.getLogger(__name__)


def build_executor_prompt(work_request: WorkRequest, raw_message: str, cwd: str) -> str:
	sections = [f"## Task\n{work_request.task}"]
	if work_request.context:
		sections.append(f"## Context\n{work_request.context}")
	sections.append(f"## Original User Message\n{raw_message}")
	sections.append(f"## Working Directory\n{cwd}")
	return "\n\n".join(sections)


class Executor:
	"""Direct execution of a work request by a single tool-using invocation."""

	def __init__(
		self,
		invoker: ClaudeInvoker,
		agent_config: AgentConfigManager,
		registry: AgentRegistry,
		settings: Optional[SupervisionSettings] = None,
	):
		self.invoker = invoker
		self.agent_config = agent_config
		self.registry = registry
		self.settings = settings or SupervisionSettings()

	async def execute(
		self,
		conversation_id: int,
		work_request: WorkRequest,
		raw_message: str,
		cwd: str,
		cancellation: Optional[Cancellation] = None,
		on_status: Optional[StatusSink] = None,
		on_invocation: Optional[TelemetrySink] = None,
	) -> ExecutorResult:
		tier = self.agent_config.get("executor")
		budget = budget_for(work_request.complexity)
		start = time.monotonic()

		agent_id = self.registry.register(
			AgentRole.ORCHESTRATOR,
			conversation_id,
			work_request.task,
			AgentPhase.EXECUTING,
		)
		throttle = StatusThrottle(on_status, self.settings.executor_status_interval)
		run_cancel = cancellation.child() if cancellation else Cancellation()
		timed_out = False

		async def expire() -> None:
			nonlocal timed_out
			await asyncio.sleep(budget.timeout)
			timed_out = True
			logger.error(f"Executor {agent_id} timed out after {format_duration(budget.timeout)}")
			await throttle.force(StatusUpdate(
				type=UpdateType.STATUS,
				message=f"Execution timed out after {format_duration(budget.timeout)}. Aborting.",
				important=True,
			))
			run_cancel.cancel("timeout")

		watchdog = Watchdog(
			throttle,
			self.settings,
			on_kill=lambda: run_cancel.cancel("stalled"),
			label="Executor",
			on_heartbeat=lambda: self.registry.update(agent_id),
		)

		output = LineBuffer()

		async def record_lines(lines: list[str]) -> None:
			if not lines:
				return
			self.registry.add_output(agent_id, lines)
			for line in lines:
				message = describe_output_line(line)
				if message:
					await throttle.send(StatusUpdate(type=UpdateType.STATUS, message=message))

		async def on_output(chunk: str) -> None:
			await record_lines(output.feed(chunk))

		def on_raw(raw: object) -> None:
			if on_invocation:
				on_invocation(raw, "executor")

		async def on_retry(reason: str) -> None:
			await record_lines(output.flush())
			await throttle.force(StatusUpdate(
				type=UpdateType.STATUS,
				message=f"Transient error, retrying in {self.settings.retry_delay:g}s...",
				important=True,
			))

		request = InvocationRequest(
			prompt=build_executor_prompt(work_request, raw_message, cwd),
			cwd=cwd,
			system_prompt=build_executor_system_prompt(),
			model=tier.model,
			max_turns=budget.max_turns,
			timeout=0,
			cancellation=run_cancel,
		)

		async def attempt() -> InvocationResult:
			return await self.invoker.invoke(
				request,
				on_invocation=on_raw,
				on_activity=watchdog.touch,
				on_output=on_output,
			)

		await throttle.force(StatusUpdate(
			type=UpdateType.STATUS,
			message=f"Working on it ({work_request.complexity.value}, up to {format_duration(budget.timeout)})",
		))

		timer = asyncio.create_task(expire())
		retried = False
		try:
			async with watchdog:
				result, retried = await call_with_transient_retry(
					attempt,
					delay=self.settings.retry_delay,
					cancellation=run_cancel,
					failure_text=lambda r: r.result if r.is_error else None,
					on_retry=on_retry,
				)
			outcome = ExecutorResult(
				success=not result.is_error,
				result=result.result,
				cost_usd=result.cost_usd or 0.0,
				retried=retried,
			)
		except CLICancelledError:
			outcome = self._interrupted(run_cancel, cancellation, timed_out, budget.timeout)
		except Exception as e:
			if run_cancel.cancelled:
				outcome = self._interrupted(run_cancel, cancellation, timed_out, budget.timeout)
			else:
				logger.error(f"Executor {agent_id} failed: {e}")
				outcome = ExecutorResult(success=False, result=f"Executor error: {e}")
		finally:
			timer.cancel()
			await asyncio.gather(timer, return_exceptions=True)
			run_cancel.detach()

		await record_lines(output.flush())
		outcome.duration = time.monotonic() - start
		self.registry.complete(agent_id, outcome.success, outcome.cost_usd)
		await throttle.force(StatusUpdate(
			type=UpdateType.COMPLETION,
			message=(
				f"{'Done' if outcome.success else 'Stopped'} after {format_duration(outcome.duration)}"
				f" (${outcome.cost_usd:.2f})"
			),
		))
		logger.info(
			f"Executor {agent_id} finished: success={outcome.success} "
			f"duration={outcome.duration:.1f}s cost={outcome.cost_usd:.4f}"
		)
		return outcome

	def _interrupted(
		self,
		run_cancel: Cancellation,
		caller: Optional[Cancellation],
		timed_out: bool,
		timeout: float,
	) -> ExecutorResult:
		if timed_out:
			return ExecutorResult(
				success=False,
				result=f"Executor timed out after {format_duration(timeout)}",
				timed_out=True,
			)
		if run_cancel.reason == "stalled":
			return ExecutorResult(
				success=False,
				result=f"Executor was stopped after {format_duration(self.settings.stall_kill)} without output",
			)
		return ExecutorResult(
			success=False,
			result="Executor was cancelled",
			cancelled=bool(caller and caller.cancelled),
		)
