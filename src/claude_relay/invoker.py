"""
Claude CLI invoker - runs `claude -p` once per call and parses its JSON output.

Handles:
- Building the CLI command line for a request
- Streaming stdout so callers can observe activity
- Timeout and cancellation (both kill the subprocess)
- Parsing structured output, with a plain-text fallback
- One transparent retry without --resume when a session has expired
"""

import asyncio
import codecs
import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .cancellation import Cancellation
from .config import Config
from .errors import (
	CLIBridgeError,
	CLICancelledError,
	CLINotFoundError,
	CLIProcessError,
	CLIRateLimitError,
	CLITimeoutError,
	JSONExtractionError,
)
from .parsing import extract_json

logger = logging.getLogger(__name__)

InvocationHook = Callable[[Any], None]
ActivityHook = Callable[[], None]
OutputHook = Callable[[str], Awaitable[None]]

NO_READABLE_RESPONSE = "No readable response from Claude."
SESSION_ERROR_KEYWORDS = ("session", "resume", "not found", "invalid")
MAX_TURNS_SUBTYPES = ("error_max_turns", "errormaxturns")
KILL_GRACE_SECONDS = 5.0
READ_CHUNK_SIZE = 4096


@dataclass(frozen=True)
class InvocationRequest:
	"""One call to the Claude CLI."""
	prompt: str
	cwd: str
	session_id: Optional[str] = None
	system_prompt: Optional[str] = None
	model: Optional[str] = None
	max_turns: Optional[int] = None
	timeout: Optional[float] = None  # seconds; None = invoker default, 0 = unbounded
	allowed_tools: Optional[str] = None  # "" disables all tools
	cancellation: Optional[Cancellation] = None


@dataclass
class InvocationResult:
	"""Parsed result of a Claude CLI call."""
	result: str
	session_id: str = ""
	is_error: bool = False
	cost_usd: Optional[float] = None
	duration: Optional[float] = None  # seconds
	num_turns: Optional[int] = None
	stop_reason: Optional[str] = None


def is_session_error(message: str) -> bool:
	"""Check whether a failure looks like an expired or unknown session."""
	lower = message.lower()
	return any(keyword in lower for keyword in SESSION_ERROR_KEYWORDS)


def _first(data: dict, *keys: str) -> Any:
	for key in keys:
		value = data.get(key)
		if value is not None:
			return value
	return None


def _seconds(data: dict) -> Optional[float]:
	ms = _first(data, "duration_ms", "durationms")
	return ms / 1000 if isinstance(ms, (int, float)) else None


def _require_container(data: Any) -> Any:
	if not isinstance(data, (dict, list)):
		raise ValueError(f"expected object or array, got {type(data).__name__}")
	return data


def extract_result(data: Any) -> InvocationResult:
	"""Build an InvocationResult from parsed CLI JSON (object or message array)."""
	if isinstance(data, list):
		entry = next(
			(item for item in data if isinstance(item, dict) and item.get("type") == "result"),
			None,
		)
		if entry is not None:
			return extract_result(entry)
		text = "".join(
			str(item.get("text") or "") for item in data if isinstance(item, dict)
		)
		if text:
			return InvocationResult(result=text)
		return InvocationResult(result=NO_READABLE_RESPONSE, is_error=True)

	session_id = _first(data, "session_id", "sessionid") or ""
	cost = _first(data, "total_cost_usd", "totalcostusd", "cost_usd")
	num_turns = _first(data, "num_turns", "numturns")
	stop_reason = _first(data, "stop_reason", "stopreason", "subtype")

	if data.get("subtype") in MAX_TURNS_SUBTYPES:
		turns = num_turns if num_turns is not None else "unknown"
		cost_str = f" (cost: ${float(cost):.2f})" if cost else ""
		return InvocationResult(
			result=(
				f"Claude reached the maximum number of turns ({turns}) for this request{cost_str}. "
				"The work may be partially complete. Ask about the current state or continue the conversation."
			),
			session_id=session_id,
			is_error=False,
			cost_usd=cost,
			duration=_seconds(data),
			num_turns=num_turns,
			stop_reason=data.get("subtype"),
		)

	is_error = bool(_first(data, "is_error", "iserror") or False)
	result = data.get("result") or data.get("content")

	if not result:
		kind = data.get("subtype") or data.get("type") or "unknown"
		text = (
			f"Claude finished but returned no readable text (type: {kind}). "
			"The task may still have been completed."
		)
	else:
		text = result if isinstance(result, str) else json.dumps(result)

	return InvocationResult(
		result=text,
		session_id=session_id,
		is_error=is_error,
		cost_usd=cost,
		duration=_seconds(data),
		num_turns=num_turns,
		stop_reason=stop_reason,
	)


def parse_cli_output(
	raw: str,
	fallback_session_id: Optional[str] = None,
	on_invocation: Optional[InvocationHook] = None,
) -> InvocationResult:
	"""
	Parse the CLI's stdout into an InvocationResult.

	Falls back to returning the raw text as a successful result when no JSON
	can be found but the CLI clearly produced output.
	"""
	text = raw.strip()
	if not text:
		raise CLIProcessError("Claude CLI produced no output")

	try:
		data = extract_json(text, convert=_require_container)
	except JSONExtractionError:
		logger.warning(f"Claude output was not JSON ({len(text)} chars), returning raw text")
		return InvocationResult(result=text, session_id=fallback_session_id or "")

	if on_invocation:
		try:
			on_invocation(data)
		except Exception as e:
			logger.error(f"Invocation telemetry hook failed: {e}")

	return extract_result(data)


class ClaudeInvoker:
	"""
	Runs the Claude CLI in print mode, one subprocess per call.

	The invoker is stateless; sessions are resumed only when the request
	carries a session id.
	"""

	def __init__(
		self,
		cli_path: str = "claude",
		default_timeout: float = 300.0,
		default_max_turns: int = 25,
	):
		self.cli_path = cli_path
		self.default_timeout = default_timeout
		self.default_max_turns = default_max_turns

	@classmethod
	def from_config(cls, config: Config) -> "ClaudeInvoker":
		return cls(
			cli_path=config.claude_cli_path,
			default_timeout=config.claude_timeout,
			default_max_turns=config.max_turns,
		)

	def build_command(self, request: InvocationRequest) -> list[str]:
		max_turns = request.max_turns if request.max_turns is not None else self.default_max_turns
		command = [
			self.cli_path,
			"-p", request.prompt,
			"--output-format", "json",
			"--max-turns", str(max_turns),
			"--verbose",
			"--dangerously-skip-permissions",
		]
		if request.system_prompt:
			command.extend(["--system-prompt", request.system_prompt])
		if request.model:
			command.extend(["--model", request.model])
		if request.allowed_tools is not None:
			command.extend(["--tools", request.allowed_tools])
		if request.session_id:
			command.extend(["--resume", request.session_id])
		return command

	async def invoke(
		self,
		request: InvocationRequest,
		on_invocation: Optional[InvocationHook] = None,
		on_activity: Optional[ActivityHook] = None,
		on_output: Optional[OutputHook] = None,
	) -> InvocationResult:
		"""
		Run the CLI for a request.

		Raises:
			CLIProcessError: Non-zero exit with no output (CLIRateLimitError when rate limited)
			CLITimeoutError: The effective timeout elapsed
			CLICancelledError: The request's cancellation fired first
		"""
		try:
			return await self._invoke_once(request, on_invocation, on_activity, on_output)
		except (CLICancelledError, CLITimeoutError):
			raise
		except CLIBridgeError as e:
			if request.session_id and is_session_error(str(e)):
				logger.warning(f"Session {request.session_id} expired, retrying without resume")
				fresh = dataclasses.replace(request, session_id=None)
				return await self._invoke_once(fresh, on_invocation, on_activity, on_output)
			raise

	async def _invoke_once(
		self,
		request: InvocationRequest,
		on_invocation: Optional[InvocationHook],
		on_activity: Optional[ActivityHook],
		on_output: Optional[OutputHook],
	) -> InvocationResult:
		command = self.build_command(request)
		timeout = request.timeout if request.timeout is not None else self.default_timeout
		cancellation = request.cancellation

		if cancellation and cancellation.cancelled:
			raise CLICancelledError("Cancelled")

		logger.debug(f"Spawning Claude CLI in {request.cwd}: {command[3:]}")

		try:
			process = await asyncio.create_subprocess_exec(
				*command,
				cwd=request.cwd,
				stdin=asyncio.subprocess.DEVNULL,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
			)
		except FileNotFoundError as e:
			raise CLINotFoundError(f"Claude CLI not found: {self.cli_path}. Is it installed?") from e

		stdout_parts: list[str] = []

		async def _collect() -> bytes:
			stderr_task = asyncio.create_task(process.stderr.read())
			decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
			try:
				while True:
					chunk = await process.stdout.read(READ_CHUNK_SIZE)
					if not chunk:
						break
					text = decoder.decode(chunk)
					if not text:
						continue
					stdout_parts.append(text)
					if on_activity:
						on_activity()
					if on_output:
						await on_output(text)
				stdout_parts.append(decoder.decode(b"", final=True))
				stderr = await stderr_task
				await process.wait()
				return stderr
			finally:
				if not stderr_task.done():
					stderr_task.cancel()

		run_task = asyncio.create_task(_collect())
		cancel_task = asyncio.create_task(cancellation.wait()) if cancellation else None
		waiters = {run_task} if cancel_task is None else {run_task, cancel_task}

		try:
			done, _ = await asyncio.wait(
				waiters,
				timeout=timeout if timeout and timeout > 0 else None,
				return_when=asyncio.FIRST_COMPLETED,
			)
			if run_task not in done:
				await self._terminate(process, run_task)
				if cancellation and cancellation.cancelled:
					raise CLICancelledError("Cancelled")
				raise CLITimeoutError(f"Claude CLI timed out after {timeout:g}s")
			stderr_bytes = run_task.result()
		finally:
			if cancel_task is not None:
				cancel_task.cancel()
			if not run_task.done():
				await self._terminate(process, run_task)

		if cancellation and cancellation.cancelled:
			raise CLICancelledError("Cancelled")

		stdout = "".join(stdout_parts)
		stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
		if stderr:
			logger.debug(f"Claude CLI stderr: {stderr[:500]}")

		if process.returncode != 0 and not stdout.strip():
			error_msg = stderr or f"Claude CLI exited with code {process.returncode}"
			if "rate limit" in stderr.lower() or "429" in stderr:
				raise CLIRateLimitError(
					f"Rate limited: {error_msg}",
					exit_code=process.returncode,
					stderr=stderr,
				)
			raise CLIProcessError(error_msg, exit_code=process.returncode, stderr=stderr)

		return parse_cli_output(stdout, request.session_id, on_invocation)

	async def _terminate(self, process: asyncio.subprocess.Process, run_task: asyncio.Task) -> None:
		"""Stop the subprocess, escalating to SIGKILL if it ignores SIGTERM."""
		if process.returncode is None:
			try:
				process.terminate()
			except ProcessLookupError:
				pass
		done, _ = await asyncio.wait({run_task}, timeout=KILL_GRACE_SECONDS)
		if run_task not in done:
			logger.warning("Claude CLI ignored SIGTERM, killing")
			try:
				process.kill()
			except ProcessLookupError:
				pass
			run_task.cancel()
