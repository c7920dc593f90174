"""
Persistent per-conversation state.

- SessionStore: Claude session ids per conversation and tier (sessions.json)
- ProjectStore: named project directories and the active one per conversation (projects.json)
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def _read_json(path: Optional[Path]) -> Optional[dict]:
	if not path or not path.exists():
		return None
	try:
		data = json.loads(path.read_text())
	except (json.JSONDecodeError, IOError) as e:
		logger.warning(f"Could not read {path}: {e}")
		return None
	return data if isinstance(data, dict) else None


def _write_json(path: Optional[Path], data: dict) -> None:
	if not path:
		return
	try:
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_text(json.dumps(data, indent=2))
	except OSError as e:
		logger.error(f"Failed to save {path}: {e}")


@dataclass
class SessionRecord:
	"""A resumable Claude session for one conversation and tier."""
	session_id: str
	cwd: str
	updated_at: str


class SessionStore:
	"""Maps (conversation, tier) to the last Claude session id."""

	def __init__(self, path: Optional[Path] = None):
		self.path = path
		self._sessions: dict[str, dict[str, SessionRecord]] = {}

	def load(self) -> None:
		data = _read_json(self.path)
		if data is None:
			logger.info("No existing sessions file, starting fresh")
			return
		for conversation, tiers in data.items():
			if not isinstance(tiers, dict):
				continue
			records = {}
			for tier, record in tiers.items():
				if not isinstance(record, dict) or not record.get("session_id"):
					continue
				try:
					records[tier] = SessionRecord(**record)
				except TypeError as e:
					logger.warning(f"Skipping malformed session record {conversation}/{tier}: {e}")
			self._sessions[conversation] = records
		logger.info(f"Sessions loaded for {len(self._sessions)} conversations")

	def save(self) -> None:
		_write_json(self.path, {
			conversation: {tier: asdict(record) for tier, record in tiers.items()}
			for conversation, tiers in self._sessions.items()
		})

	def get(self, conversation_id: int, tier: str = "chat") -> Optional[SessionRecord]:
		return self._sessions.get(str(conversation_id), {}).get(tier)

	def get_session_id(self, conversation_id: int, tier: str = "chat") -> Optional[str]:
		record = self.get(conversation_id, tier)
		return record.session_id if record else None

	def set_session_id(self, conversation_id: int, session_id: str, cwd: str, tier: str = "chat") -> None:
		self._sessions.setdefault(str(conversation_id), {})[tier] = SessionRecord(
			session_id=session_id,
			cwd=cwd,
			updated_at=datetime.now().isoformat(),
		)
		self.save()

	def clear(self, conversation_id: int) -> bool:
		"""Forget every session of a conversation. Returns whether any existed."""
		removed = self._sessions.pop(str(conversation_id), None)
		if removed is not None:
			self.save()
		return removed is not None


class ProjectStore:
	"""Named project directories, with an active project per conversation."""

	def __init__(self, path: Optional[Path] = None, default_dir: Optional[Path] = None):
		self.path = path
		self.default_dir = default_dir or Path.home()
		self._projects: dict[str, str] = {}
		self._active: dict[str, str] = {}

	def load(self) -> None:
		data = _read_json(self.path)
		if data is None:
			logger.info("No existing projects file, starting fresh")
			return
		self._projects = dict(data.get("projects") or {})
		self._active = dict(data.get("active") or {})
		logger.info(f"Loaded {len(self._projects)} projects")

	def save(self) -> None:
		_write_json(self.path, {"projects": self._projects, "active": self._active})

	def add(self, name: str, directory: str) -> str:
		"""
		Register a project directory under a name.

		Raises:
			ValueError: If the directory does not exist
		"""
		resolved = Path(directory).expanduser().resolve()
		if not resolved.is_dir():
			raise ValueError(f"Directory not found: {resolved}")
		self._projects[name] = str(resolved)
		self.save()
		return str(resolved)

	def remove(self, name: str) -> bool:
		if name not in self._projects:
			return False
		del self._projects[name]
		self._active = {conv: proj for conv, proj in self._active.items() if proj != name}
		self.save()
		return True

	def list(self) -> dict[str, str]:
		return dict(self._projects)

	def switch(self, conversation_id: int, name: str) -> str:
		"""
		Make a project active for a conversation.

		Raises:
			KeyError: If no project has that name
		"""
		if name not in self._projects:
			raise KeyError(name)
		self._active[str(conversation_id)] = name
		self.save()
		return self._projects[name]

	def get_active_project_name(self, conversation_id: int) -> Optional[str]:
		return self._active.get(str(conversation_id))

	def get_active_project_dir(self, conversation_id: int) -> str:
		name = self.get_active_project_name(conversation_id)
		if name and name in self._projects:
			return self._projects[name]
		return str(self.default_dir)
