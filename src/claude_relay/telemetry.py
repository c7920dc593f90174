"""Invocation log - a bounded record of Claude CLI calls and their cost."""

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

MAX_ENTRIES = 100


@dataclass
class InvocationEntry:
	timestamp: float
	conversation_id: int
	tier: str
	is_error: bool
	duration_ms: Optional[float] = None
	duration_api_ms: Optional[float] = None
	cost_usd: Optional[float] = None
	num_turns: Optional[int] = None
	stop_reason: Optional[str] = None
	model_usage: Optional[dict] = None


def _result_object(raw: Any) -> dict:
	"""The result record out of a CLI payload (object or message array)."""
	if isinstance(raw, list):
		for item in raw:
			if isinstance(item, dict) and item.get("type") == "result":
				return item
		return {}
	return raw if isinstance(raw, dict) else {}


class InvocationLog:
	"""Keeps the last MAX_ENTRIES invocations in memory and in invocations.json."""

	def __init__(self, path: Optional[Path] = None, max_entries: int = MAX_ENTRIES):
		self.path = path
		self.max_entries = max_entries
		self._entries: list[InvocationEntry] = []

	def load(self) -> None:
		if not self.path or not self.path.exists():
			logger.info("No existing invocations file, starting fresh")
			return
		try:
			data = json.loads(self.path.read_text())
			self._entries = [InvocationEntry(**item) for item in data][-self.max_entries:]
		except (json.JSONDecodeError, TypeError, IOError) as e:
			logger.warning(f"Invocations file unreadable, starting fresh: {e}")
			return
		logger.info(f"Loaded {len(self._entries)} invocations")

	def record(self, raw: Any, conversation_id: int, tier: str) -> InvocationEntry:
		data = _result_object(raw)
		entry = InvocationEntry(
			timestamp=time.time(),
			conversation_id=conversation_id,
			tier=tier,
			is_error=bool(data.get("is_error", False)),
			duration_ms=data.get("duration_ms"),
			duration_api_ms=data.get("duration_api_ms"),
			cost_usd=data.get("total_cost_usd", data.get("cost_usd")),
			num_turns=data.get("num_turns"),
			stop_reason=data.get("stop_reason") or data.get("subtype"),
			model_usage=data.get("modelUsage") or data.get("model_usage"),
		)
		self._entries.append(entry)
		if len(self._entries) > self.max_entries:
			self._entries = self._entries[-self.max_entries:]
		self._save()
		return entry

	def _save(self) -> None:
		if not self.path:
			return
		try:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			self.path.write_text(json.dumps([asdict(e) for e in self._entries], indent=2))
			logger.debug("Invocation logged")
		except OSError as e:
			logger.error(f"Failed to save invocations: {e}")

	def recent(self, n: int = 20) -> list[InvocationEntry]:
		return self._entries[-n:] if n > 0 else []

	def total_cost(self) -> float:
		return sum(e.cost_usd or 0.0 for e in self._entries)

	def __len__(self) -> int:
		return len(self._entries)
