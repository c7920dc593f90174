"""
Orchestrator - the plan-then-delegate strategy.

Phases:
1. Planning: one tool-less invocation that must answer with a JSON plan
2. Execution: each plan unit runs on a Worker, sequentially or in dependency waves
3. Summary: one tool-less invocation condenses the unit results

Every unit runs under its own child cancellation, so a single unit can be
killed or retried from the registry without disturbing its siblings.
"""

import asyncio
import logging
import uuid
from typing import Optional

from ..cancellation import Cancellation
from ..config import AgentConfigManager, SupervisionSettings
from ..errors import PlanParseError
from ..invoker import ClaudeInvoker, InvocationRequest
from .models import (
	AgentPhase,
	AgentRole,
	ExecutionPlan,
	RunSummary,
	StatusUpdate,
	UnitResult,
	UnitTask,
	UpdateType,
	WorkerAbortHandle,
	WorkRequest,
)
from .monitor import (
	LineBuffer,
	StatusSink,
	StatusThrottle,
	TelemetrySink,
	Watchdog,
	budget_for,
	call_with_transient_retry,
	format_duration,
)
from .planning import parse_plan, truncate_plan
from .prompts import SUMMARY_SYSTEM_PROMPT, build_orchestrator_system_prompt
from .registry import AgentRegistry
from .worker import Worker

logger = logging.getLogger(__name__)

RESULT_EXCERPT_LENGTH = 2000

CANCEL_MESSAGES = {
	"killed": "Worker killed by user",
	"stalled": "Worker stopped after prolonged silence",
	"timeout": "Worker stopped because the run timed out",
	"run finished": "Retry stopped because its run finished",
}


def build_plan_prompt(work_request: WorkRequest, cwd: str) -> str:
	return "\n".join([
		"Work request from user:",
		f"Task: {work_request.task}",
		f"Context: {work_request.context}",
		f"Urgency: {work_request.urgency}",
		"",
		f"Working directory: {cwd}",
		"",
		"Analyze this request and output a JSON plan.",
	])


def build_summary_prompt(results: list[UnitResult], total_cost: float) -> str:
	lines = ["All workers have completed. Here are the results:", ""]
	for result in results:
		lines.extend([
			f"--- Worker: {result.task_id} ---",
			f"Success: {result.success}",
			f"Duration: {format_duration(result.duration)}",
			f"Result: {result.result[:RESULT_EXCERPT_LENGTH]}",
			"",
		])
	lines.extend([
		f"Total cost so far: ${total_cost:.4f}",
		"",
		"Provide a concise summary of what was accomplished, any failures, and any follow-up needed.",
		"Respond in plain text (not JSON).",
	])
	return "\n".join(lines)


def fallback_summary(results: list[UnitResult], total_cost: float) -> str:
	successes = sum(1 for r in results if r.success)
	failures = len(results) - successes
	failed = f", {failures} failed" if failures else ""
	return f"Completed {successes} task(s) successfully{failed}. Total cost: ${total_cost:.4f}."


class Orchestrator:
	"""Plans a work request, delegates the units to workers and summarizes."""

	def __init__(
		self,
		invoker: ClaudeInvoker,
		agent_config: AgentConfigManager,
		registry: AgentRegistry,
		settings: Optional[SupervisionSettings] = None,
		worker: Optional[Worker] = None,
	):
		self.invoker = invoker
		self.agent_config = agent_config
		self.registry = registry
		self.settings = settings or SupervisionSettings()
		self.worker = worker or Worker(invoker, agent_config)

	async def execute(
		self,
		conversation_id: int,
		work_request: WorkRequest,
		cwd: str,
		cancellation: Optional[Cancellation] = None,
		on_status: Optional[StatusSink] = None,
		on_invocation: Optional[TelemetrySink] = None,
	) -> RunSummary:
		run = _OrchestratorRun(self, conversation_id, work_request, cwd, cancellation, on_status, on_invocation)
		return await run.execute()


class _OrchestratorRun:
	"""State of one orchestrator run."""

	def __init__(
		self,
		orchestrator: Orchestrator,
		conversation_id: int,
		work_request: WorkRequest,
		cwd: str,
		cancellation: Optional[Cancellation],
		on_status: Optional[StatusSink],
		on_invocation: Optional[TelemetrySink],
	):
		self.invoker = orchestrator.invoker
		self.agent_config = orchestrator.agent_config
		self.registry = orchestrator.registry
		self.settings = orchestrator.settings
		self.worker = orchestrator.worker
		self.conversation_id = conversation_id
		self.work_request = work_request
		self.cwd = cwd
		self.caller_cancel = cancellation
		self.cancel = cancellation.child() if cancellation else Cancellation()
		self.throttle = StatusThrottle(on_status, self.settings.orchestrator_status_interval)
		self.on_invocation = on_invocation
		self.budget = budget_for(work_request.complexity)
		self.orch_id = ""
		self.timed_out = False
		self.results: list[UnitResult] = []
		self.deadlocked: list[str] = []
		self._retries: set[asyncio.Task] = set()

	def _telemetry(self, tier: str):
		def hook(raw: object) -> None:
			if self.on_invocation:
				self.on_invocation(raw, tier)
		return hook

	async def _status(self, message: str, progress: Optional[str] = None) -> None:
		await self.throttle.send(StatusUpdate(type=UpdateType.STATUS, message=message, progress=progress))

	async def _expire(self) -> None:
		await asyncio.sleep(self.budget.timeout)
		self.timed_out = True
		logger.error(f"Orchestrator {self.orch_id} timed out after {format_duration(self.budget.timeout)}")
		await self.throttle.force(StatusUpdate(
			type=UpdateType.STATUS,
			message=f"Orchestration timed out after {format_duration(self.budget.timeout)}. Aborting.",
			important=True,
		))
		self.cancel.cancel("timeout")

	async def execute(self) -> RunSummary:
		self.orch_id = self.registry.register(
			AgentRole.ORCHESTRATOR,
			self.conversation_id,
			self.work_request.task,
			AgentPhase.PLANNING,
		)
		logger.info(f"Orchestrator {self.orch_id} starting: {self.work_request.task[:80]}")

		timer = asyncio.create_task(self._expire())
		try:
			summary = await self._run()
		finally:
			timer.cancel()
			await asyncio.gather(timer, return_exceptions=True)
			self.registry.clear_retry_handler(self.orch_id)
			if self._retries:
				self.cancel.cancel("run finished")
				await asyncio.gather(*self._retries, return_exceptions=True)
			self.cancel.detach()

		self.registry.complete(self.orch_id, summary.overall_success, summary.total_cost_usd)
		if summary.overall_success:
			self.registry.clear_worker_handles(self.orch_id)
		await self.throttle.force(StatusUpdate(
			type=UpdateType.COMPLETION,
			message=summary.summary,
			progress=f"{sum(1 for r in summary.unit_results if r.success)}/{len(summary.unit_results)} tasks",
		))
		logger.info(
			f"Orchestrator {self.orch_id} finished: success={summary.overall_success} "
			f"cost={summary.total_cost_usd:.4f}"
		)
		return summary

	async def _run(self) -> RunSummary:
		tier = self.agent_config.get("orchestrator")

		await self._status("Planning the work...")
		try:
			plan_result = await self.invoker.invoke(
				InvocationRequest(
					prompt=build_plan_prompt(self.work_request, self.cwd),
					cwd=self.cwd,
					system_prompt=build_orchestrator_system_prompt(),
					model=tier.model,
					max_turns=1,
					timeout=tier.timeout,
					allowed_tools="",
					cancellation=self.cancel,
				),
				on_invocation=self._telemetry("orchestrator"),
			)
		except Exception as e:
			logger.error(f"Orchestrator planning invocation failed: {e}")
			return self._planning_failure(str(e))

		plan_cost = plan_result.cost_usd or 0.0
		try:
			plan = parse_plan(plan_result.result)
		except PlanParseError as e:
			logger.error(f"Orchestrator plan unusable: {e}")
			return self._planning_failure(str(e), plan_cost)

		plan = truncate_plan(plan, self.settings.max_units)
		logger.info(
			f"Orchestrator {self.orch_id} plan: {len(plan.workers)} workers, "
			f"sequential={plan.sequential}: {plan.summary[:80]}"
		)
		self.registry.update(
			self.orch_id,
			phase=AgentPhase.EXECUTING,
			progress=f"0/{len(plan.workers)} tasks",
		)
		await self.throttle.force(StatusUpdate(
			type=UpdateType.PLAN,
			message=f"Plan: {plan.summary}",
			progress=f"0/{len(plan.workers)} tasks",
		))

		self.registry.set_retry_handler(self.orch_id, self.retry)
		if plan.sequential:
			await self._run_sequential(plan)
		else:
			await self._run_waves(plan)

		units_cost = sum(r.cost_usd for r in self.results)
		total_cost = plan_cost + units_cost
		self.registry.update(self.orch_id, phase=AgentPhase.SUMMARIZING)
		summary_text, summary_cost = await self._summarize(total_cost)

		cancelled = bool(self.caller_cancel and self.caller_cancel.cancelled)
		return RunSummary(
			overall_success=(
				all(r.success for r in self.results)
				and not cancelled
				and not self.timed_out
			),
			summary=summary_text,
			unit_results=list(self.results),
			total_cost_usd=total_cost + summary_cost,
			cancelled=cancelled,
			timed_out=self.timed_out,
			plan=plan,
		)

	def _planning_failure(self, reason: str, cost: float = 0.0) -> RunSummary:
		cancelled = bool(self.caller_cancel and self.caller_cancel.cancelled)
		if cancelled:
			text = "Cancelled during planning."
		elif self.timed_out:
			text = f"Timed out during planning after {format_duration(self.budget.timeout)}."
		else:
			text = f"Planning failed: {reason}. The orchestrator did not produce a valid plan."
		return RunSummary(
			overall_success=False,
			summary=text,
			total_cost_usd=cost,
			cancelled=cancelled,
			timed_out=self.timed_out,
		)

	# ==================== Execution ====================

	async def _run_sequential(self, plan: ExecutionPlan) -> None:
		total = len(plan.workers)
		for number, task in enumerate(plan.workers, 1):
			if self.cancel.cancelled:
				break
			result = await self._run_unit(task, number)
			self.results.append(result)
			await self._unit_done(task, total)

	async def _run_waves(self, plan: ExecutionPlan) -> None:
		numbers = {task.id: number for number, task in enumerate(plan.workers, 1)}
		total = len(plan.workers)
		satisfied: set[str] = set()
		remaining = [task.id for task in plan.workers]

		while remaining:
			if self.cancel.cancelled:
				break
			ready = [
				task for task in plan.workers
				if task.id in remaining and all(dep in satisfied for dep in task.depends_on)
			]
			if not ready:
				self.deadlocked = list(remaining)
				logger.error(f"Worker dependency deadlock, stuck: {', '.join(remaining)}")
				break

			results = await asyncio.gather(*(self._run_unit(task, numbers[task.id]) for task in ready))
			for task, result in zip(ready, results):
				self.results.append(result)
				satisfied.add(task.id)
				remaining.remove(task.id)

			done = len(self.results)
			self.registry.update(self.orch_id, progress=f"{done}/{total} tasks")
			await self._status(f"Completed {done} of {total} tasks", progress=f"{done}/{total} tasks")

	async def _unit_done(self, task: UnitTask, total: int) -> None:
		done = len(self.results)
		self.registry.update(self.orch_id, progress=f"{done}/{total} tasks")
		await self.throttle.send(StatusUpdate(
			type=UpdateType.UNIT_COMPLETE,
			message=f"Completed: {task.description}",
			progress=f"{done}/{total} tasks",
		))

	async def _run_unit(self, task: UnitTask, number: int, handle_key: Optional[str] = None) -> UnitResult:
		"""Run one unit under its own cancellation, watchdog and transient retry."""
		unit_cancel = self.cancel.child()
		handle_key = handle_key or task.id
		agent_id = self.registry.register(
			AgentRole.WORKER,
			self.conversation_id,
			f"#{number}: {task.description}",
			AgentPhase.EXECUTING,
			parent_id=self.orch_id,
		)
		self.registry.set_worker_handle(self.orch_id, handle_key, WorkerAbortHandle(
			cancellation=unit_cancel,
			task_prompt=task.prompt,
			task_description=task.description,
			worker_number=number,
			agent_id=agent_id,
		))

		watchdog = Watchdog(
			self.throttle,
			self.settings,
			on_kill=lambda: unit_cancel.cancel("stalled"),
			label=f"Worker #{number}",
			on_heartbeat=lambda: self.registry.update(agent_id),
		)

		output = LineBuffer()

		async def on_output(chunk: str) -> None:
			lines = output.feed(chunk)
			if lines:
				self.registry.add_output(agent_id, lines)

		def flush_output() -> None:
			lines = output.flush()
			if lines:
				self.registry.add_output(agent_id, lines)

		async def on_retry(reason: str) -> None:
			flush_output()
			await self.throttle.force(StatusUpdate(
				type=UpdateType.STATUS,
				message=f"Worker #{number} hit a transient error, retrying in {self.settings.retry_delay:g}s...",
				important=True,
			))

		async def attempt() -> UnitResult:
			return await self.worker.run(
				task,
				self.cwd,
				cancellation=unit_cancel,
				on_invocation=self._telemetry("worker"),
				on_activity=watchdog.touch,
				on_output=on_output,
			)

		try:
			async with watchdog:
				result, _ = await call_with_transient_retry(
					attempt,
					delay=self.settings.retry_delay,
					cancellation=unit_cancel,
					failure_text=lambda r: None if r.success or r.cancelled else r.result,
					on_retry=on_retry,
				)
		finally:
			unit_cancel.detach()
			flush_output()

		if result.cancelled and unit_cancel.reason in CANCEL_MESSAGES:
			result.result = CANCEL_MESSAGES[unit_cancel.reason]

		self.registry.complete(agent_id, result.success, result.cost_usd)
		if result.success:
			self.registry.remove_worker_handle(self.orch_id, handle_key)
		return result

	async def retry(self, number: int) -> Optional[UnitResult]:
		"""Re-run a failed or killed unit. The result is not part of the run's aggregate."""
		found = self.registry.retryable_worker(self.orch_id, number)
		if found is None:
			return None
		handle_key, handle = found
		task = UnitTask(
			id=f"{handle_key}-retry-{uuid.uuid4().hex[:6]}",
			description=handle.task_description,
			prompt=handle.task_prompt,
		)
		logger.info(f"Retrying worker #{number} of {self.orch_id} as {task.id}")
		job = asyncio.create_task(self._run_unit(task, number, handle_key=handle_key))
		self._retries.add(job)
		job.add_done_callback(self._retries.discard)
		return await job

	# ==================== Summary ====================

	async def _summarize(self, total_cost: float) -> tuple[str, float]:
		await self._status("Summarizing results...")
		tier = self.agent_config.get("orchestrator")
		try:
			result = await self.invoker.invoke(
				InvocationRequest(
					prompt=build_summary_prompt(self.results, total_cost),
					cwd=self.cwd,
					system_prompt=SUMMARY_SYSTEM_PROMPT,
					model=tier.model,
					max_turns=1,
					timeout=self.settings.summary_timeout,
					allowed_tools="",
					cancellation=self.cancel,
				),
				on_invocation=self._telemetry("orchestrator"),
			)
		except Exception as e:
			logger.error(f"Orchestrator summary phase failed: {e}")
			return fallback_summary(self.results, total_cost), 0.0
		if result.is_error or not result.result.strip():
			return fallback_summary(self.results, total_cost), result.cost_usd or 0.0
		return result.result, result.cost_usd or 0.0
