"""
Supervision helpers shared by the executor and the orchestrator.

- StatusThrottle: rate-limits progress narration to the status sink
- Watchdog: heartbeats and stall detection around one running unit
- Transient error classification with a single delayed retry
- Budgets per work complexity
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..cancellation import Cancellation
from ..config import SupervisionSettings
from ..errors import CLICancelledError
from .models import Complexity, StatusUpdate, UpdateType

logger = logging.getLogger(__name__)

T = TypeVar("T")

StatusSink = Callable[[StatusUpdate], Awaitable[None]]
TelemetrySink = Callable[[object, str], None]  # (raw CLI payload, tier)

TRANSIENT_ERROR_PATTERNS = (
	"rate limit",
	"429",
	"timed out",
	"timeout",
	"econnreset",
	"econnrefused",
	"socket hang up",
	"network error",
	"overloaded",
	"503",
	"502",
)


@dataclass(frozen=True)
class Budget:
	"""Turn and wall-clock allowance for one work request."""
	max_turns: int
	timeout: float  # seconds


BUDGETS_BY_COMPLEXITY: dict[Complexity, Budget] = {
	Complexity.TRIVIAL: Budget(max_turns=5, timeout=300.0),
	Complexity.MODERATE: Budget(max_turns=20, timeout=600.0),
	Complexity.COMPLEX: Budget(max_turns=50, timeout=1800.0),
}


def budget_for(complexity: Complexity) -> Budget:
	return BUDGETS_BY_COMPLEXITY.get(complexity, BUDGETS_BY_COMPLEXITY[Complexity.MODERATE])


def format_duration(seconds: float) -> str:
	"""Short human duration: 45s, 2m 5s, 1h 3m."""
	total = int(seconds)
	if total < 60:
		return f"{total}s"
	minutes, secs = divmod(total, 60)
	if minutes < 60:
		return f"{minutes}m {secs}s" if secs else f"{minutes}m"
	hours, minutes = divmod(minutes, 60)
	return f"{hours}h {minutes}m" if minutes else f"{hours}h"


def is_transient_error(message: str) -> bool:
	lower = message.lower()
	return any(pattern in lower for pattern in TRANSIENT_ERROR_PATTERNS)


async def call_with_transient_retry(
	call: Callable[[], Awaitable[T]],
	*,
	delay: float,
	cancellation: Optional[Cancellation] = None,
	failure_text: Optional[Callable[[T], Optional[str]]] = None,
	on_retry: Optional[Callable[[str], Awaitable[None]]] = None,
) -> tuple[T, bool]:
	"""
	Run call, and run it once more after delay if it failed transiently.

	A failure is either a raised exception or a result for which failure_text
	returns a message. Nothing is retried once the cancellation has fired.

	Returns:
		(result, retried)
	"""
	try:
		result = await call()
	except CLICancelledError:
		raise
	except Exception as e:
		reason = str(e)
		if (cancellation and cancellation.cancelled) or not is_transient_error(reason):
			raise
	else:
		reason = failure_text(result) if failure_text else None
		if not reason or (cancellation and cancellation.cancelled) or not is_transient_error(reason):
			return result, False

	logger.warning(f"Transient failure, retrying in {delay:g}s: {reason[:200]}")
	if on_retry:
		await on_retry(reason)
	await asyncio.sleep(delay)
	return await call(), True


class StatusThrottle:
	"""
	Forwards status updates to a sink at most once per interval.

	Updates marked important, and plan or completion updates, always pass and
	do not reset the interval.
	"""

	BYPASS_TYPES = (UpdateType.PLAN, UpdateType.COMPLETION)

	def __init__(
		self,
		sink: Optional[StatusSink],
		interval: float,
		clock: Callable[[], float] = time.monotonic,
	):
		self.sink = sink
		self.interval = interval
		self._clock = clock
		self._last_sent: Optional[float] = None

	async def send(self, update: StatusUpdate) -> bool:
		"""Deliver an update unless throttled. Returns whether it was delivered."""
		if self.sink is None:
			return False
		if not (update.important or update.type in self.BYPASS_TYPES):
			now = self._clock()
			if self._last_sent is not None and now - self._last_sent < self.interval:
				return False
			self._last_sent = now
		await self._deliver(update)
		return True

	async def force(self, update: StatusUpdate) -> bool:
		"""Deliver an update regardless of the interval."""
		if self.sink is None:
			return False
		await self._deliver(update)
		return True

	async def _deliver(self, update: StatusUpdate) -> None:
		try:
			await self.sink(update)
		except Exception as e:
			logger.error(f"Status sink failed: {e}")


class Watchdog:
	"""
	Watches one running unit for silence.

	Use as an async context manager around the work. Call touch() whenever
	the unit shows activity. After stall_warning seconds of silence a warning
	is sent once, a resumed notice follows if activity comes back, and after
	stall_kill seconds on_kill is called.
	"""

	def __init__(
		self,
		throttle: StatusThrottle,
		settings: SupervisionSettings,
		on_kill: Callable[[], None],
		label: str = "Executor",
		on_heartbeat: Optional[Callable[[], None]] = None,
		clock: Callable[[], float] = time.monotonic,
	):
		self.throttle = throttle
		self.settings = settings
		self.on_kill = on_kill
		self.label = label
		self.on_heartbeat = on_heartbeat
		self._clock = clock
		self.started_at = clock()
		self.last_activity = self.started_at
		self.warned = False
		self.killed = False
		self._tasks: list[asyncio.Task] = []

	async def __aenter__(self) -> "Watchdog":
		self.started_at = self.last_activity = self._clock()
		self._tasks = [
			asyncio.create_task(self._heartbeat_loop()),
			asyncio.create_task(self._stall_loop()),
		]
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.stop()

	async def stop(self) -> None:
		tasks, self._tasks = self._tasks, []
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)

	def touch(self) -> None:
		self.last_activity = self._clock()

	@property
	def elapsed(self) -> float:
		return self._clock() - self.started_at

	async def _heartbeat_loop(self) -> None:
		while True:
			await asyncio.sleep(self.settings.heartbeat_interval)
			if self.on_heartbeat:
				self.on_heartbeat()
			await self.throttle.send(StatusUpdate(
				type=UpdateType.HEARTBEAT,
				message=f"{self.label} still working ({format_duration(self.elapsed)} elapsed)",
			))

	async def _stall_loop(self) -> None:
		while True:
			await asyncio.sleep(self.settings.stall_check_interval)
			await self.check()
			if self.killed:
				return

	async def check(self) -> None:
		"""Evaluate silence once. Runs on every stall-check tick."""
		silent = self._clock() - self.last_activity

		if self.warned and silent < self.settings.stall_warning:
			self.warned = False
			await self.throttle.force(StatusUpdate(
				type=UpdateType.STALL,
				message=f"{self.label} is active again.",
			))

		if silent >= self.settings.stall_kill:
			self.killed = True
			logger.error(f"{self.label} silent for {format_duration(silent)}, killing")
			await self.throttle.force(StatusUpdate(
				type=UpdateType.STALL,
				message=f"{self.label} has been silent for {format_duration(silent)}. Killing it.",
				important=True,
			))
			self.on_kill()
		elif silent >= self.settings.stall_warning and not self.warned:
			self.warned = True
			logger.warning(f"{self.label} silent for {format_duration(silent)}")
			await self.throttle.force(StatusUpdate(
				type=UpdateType.STALL,
				message=(
					f"{self.label} has been silent for {format_duration(silent)}. "
					f"It will be stopped after {format_duration(self.settings.stall_kill)} of silence."
				),
				important=True,
			))


class LineBuffer:
	"""Reassembles whole lines from raw stdout chunks."""

	def __init__(self):
		self._partial = ""

	def feed(self, chunk: str) -> list[str]:
		"""Complete non-blank lines in chunk. A trailing partial line is held back."""
		*lines, self._partial = (self._partial + chunk).split("\n")
		return [line for line in lines if line.strip()]

	def flush(self) -> list[str]:
		rest, self._partial = self._partial, ""
		return [rest] if rest.strip() else []


READ_PATTERN = re.compile(r"(?:reading|read file)\s+(.+)", re.IGNORECASE)
EDIT_PATTERN = re.compile(r"(?:edited|writing|wrote)\s+(.+)", re.IGNORECASE)


def describe_output_line(line: str) -> Optional[str]:
	"""A short status message for an interesting line of CLI output, if any."""
	lower = line.lower()
	if "reading" in lower or "read file" in lower:
		match = READ_PATTERN.search(line)
		return f"Reading {match.group(1).strip()[:60]}" if match else None
	if "edited" in lower or "writing" in lower or "wrote" in lower:
		match = EDIT_PATTERN.search(line)
		return f"Editing {match.group(1).strip()[:60]}" if match else None
	if "running" in lower and any(word in lower for word in ("npm", "git", "test")):
		return line.strip()[:80]
	return None
