"""
Layered JSON extraction for semi-structured Claude output.

The strategies run strictest first and each later one is looser:

1. the whole trimmed text
2. the first fenced code block
3. the object around the first "type" key (one candidate only)
4. the outermost balanced pair ending at the last closing bracket
"""

import json
import logging
import re
from typing import Any, Callable, Iterator, Optional

from .errors import JSONExtractionError

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n([\s\S]*?)\n\s*```")
TYPE_MARKER = '"type"'


def _balanced_forward(text: str, start: int, open_char: str, close_char: str) -> Optional[int]:
	"""Index of the bracket closing the one at start, or None."""
	depth = 0
	for i in range(start, len(text)):
		if text[i] == open_char:
			depth += 1
		elif text[i] == close_char:
			depth -= 1
			if depth == 0:
				return i
	return None


def _balanced_backward(text: str, end: int, open_char: str, close_char: str) -> Optional[int]:
	"""Index of the bracket opening the one at end, or None."""
	depth = 0
	for i in range(end, -1, -1):
		if text[i] == close_char:
			depth += 1
		elif text[i] == open_char:
			depth -= 1
			if depth == 0:
				return i
	return None


def iter_candidates(text: str, type_marker: str = TYPE_MARKER) -> Iterator[tuple[str, str]]:
	"""Yield (strategy, candidate) pairs in ladder order."""
	yield "whole", text

	fence = FENCE_PATTERN.search(text)
	if fence:
		yield "fenced", fence.group(1).strip()

	marker = text.find(type_marker)
	if marker != -1:
		brace_start = text.rfind("{", 0, marker)
		if brace_start != -1:
			brace_end = _balanced_forward(text, brace_start, "{", "}")
			if brace_end is not None:
				yield "type-anchored", text[brace_start:brace_end + 1]

	last_close = max(text.rfind("}"), text.rfind("]"))
	if last_close != -1:
		close_char = text[last_close]
		open_char = "{" if close_char == "}" else "["
		start = _balanced_backward(text, last_close, open_char, close_char)
		if start is not None:
			yield "outermost", text[start:last_close + 1]


def extract_json(
	raw: str,
	convert: Optional[Callable[[Any], Any]] = None,
	type_marker: str = TYPE_MARKER,
) -> Any:
	"""
	Extract a JSON value from raw model output.

	Args:
		raw: Text that should contain a JSON value
		convert: Optional validator/converter applied to each parsed candidate.
			Raising ValueError rejects the candidate and moves down the ladder.
		type_marker: Key used to anchor strategy 3

	Returns:
		The parsed (and converted) value

	Raises:
		JSONExtractionError: If no strategy yields an acceptable value
	"""
	text = raw.strip()
	if not text:
		raise JSONExtractionError("No JSON found in empty output")

	for strategy, candidate in iter_candidates(text, type_marker):
		try:
			data = json.loads(candidate)
			value = convert(data) if convert else data
		except ValueError as e:
			logger.debug(f"JSON strategy '{strategy}' rejected: {e}")
			continue
		logger.debug(f"JSON extracted with strategy '{strategy}'")
		return value

	raise JSONExtractionError(
		f'Could not extract JSON from output. Raw output starts with: "{text[:100]}..."'
	)
