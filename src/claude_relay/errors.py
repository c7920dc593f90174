"""Exception hierarchy for claude-relay."""

from typing import Optional


class RelayError(Exception):
	"""Base exception for claude-relay."""
	pass


class CLIBridgeError(RelayError):
	"""Base exception for Claude CLI invocation errors."""

	def __init__(
		self,
		message: str,
		*,
		exit_code: Optional[int] = None,
		stderr: str = "",
	):
		super().__init__(message)
		self.exit_code = exit_code
		self.stderr = stderr


class CLIProcessError(CLIBridgeError):
	"""Raised when the CLI exits non-zero without producing output."""
	pass


class CLIRateLimitError(CLIProcessError):
	"""Raised when the CLI failed and stderr indicates rate limiting."""
	pass


class CLINotFoundError(CLIProcessError):
	"""Raised when the CLI binary cannot be found."""
	pass


class CLITimeoutError(CLIBridgeError):
	"""Raised when the CLI exceeds its timeout."""
	pass


class CLICancelledError(CLIBridgeError):
	"""Raised when the cancellation signal fires before the CLI exits."""
	pass


class JSONExtractionError(RelayError):
	"""Raised when no JSON value can be extracted from model output."""
	pass


class PlanParseError(RelayError):
	"""Raised when planning output does not contain a valid execution plan."""

	def __init__(self, message: str, raw_excerpt: str = ""):
		super().__init__(message)
		self.raw_excerpt = raw_excerpt
