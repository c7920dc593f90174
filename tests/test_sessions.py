"""Tests for the session and project stores."""

import json
from pathlib import Path

import pytest

from claude_relay.sessions import ProjectStore, SessionStore


class TestSessionStore:
	"""Tests for per-conversation Claude sessions."""

	def test_set_and_get(self, tmp_path: Path):
		store = SessionStore(tmp_path / "sessions.json")
		store.set_session_id(42, "sess-abc", "/repo")

		assert store.get_session_id(42) == "sess-abc"
		assert store.get(42).cwd == "/repo"
		assert store.get_session_id(42, tier="worker") is None
		assert store.get_session_id(43) is None

	def test_persists_across_instances(self, tmp_path: Path):
		path = tmp_path / "sessions.json"
		SessionStore(path).set_session_id(42, "sess-abc", "/repo")

		reloaded = SessionStore(path)
		reloaded.load()

		assert reloaded.get_session_id(42) == "sess-abc"

	def test_clear(self, tmp_path: Path):
		store = SessionStore(tmp_path / "sessions.json")
		store.set_session_id(42, "sess-abc", "/repo")

		assert store.clear(42)
		assert not store.clear(42)
		assert store.get_session_id(42) is None

	def test_load_corrupt_file(self, tmp_path: Path):
		path = tmp_path / "sessions.json"
		path.write_text("[not a dict")
		store = SessionStore(path)
		store.load()
		assert store.get_session_id(42) is None

	def test_load_skips_malformed_records(self, tmp_path: Path):
		path = tmp_path / "sessions.json"
		path.write_text(json.dumps({
			"42": {
				"chat": {"session_id": "s1", "cwd": "/tmp", "updated_at": "2026-01-01T00:00:00"},
				"worker": {"session_id": "s2", "unexpected": True},
			},
		}))
		store = SessionStore(path)
		store.load()
		assert store.get_session_id(42) == "s1"
		assert store.get_session_id(42, "worker") is None

	def test_without_path(self):
		store = SessionStore()
		store.set_session_id(1, "s", "/")
		assert store.get_session_id(1) == "s"


class TestProjectStore:
	"""Tests for named project directories."""

	def test_default_dir(self, tmp_path: Path):
		store = ProjectStore(tmp_path / "projects.json", default_dir=tmp_path)
		assert store.get_active_project_dir(1) == str(tmp_path)
		assert store.get_active_project_name(1) is None

	def test_add_switch_and_resolve(self, tmp_path: Path):
		project = tmp_path / "api"
		project.mkdir()
		store = ProjectStore(tmp_path / "projects.json", default_dir=tmp_path)

		resolved = store.add("api", str(project))
		store.switch(1, "api")

		assert resolved == str(project.resolve())
		assert store.get_active_project_dir(1) == resolved
		assert store.get_active_project_name(1) == "api"
		assert store.get_active_project_dir(2) == str(tmp_path)

	def test_add_missing_directory(self, tmp_path: Path):
		store = ProjectStore(tmp_path / "projects.json")
		with pytest.raises(ValueError):
			store.add("ghost", str(tmp_path / "nope"))

	def test_switch_unknown(self, tmp_path: Path):
		store = ProjectStore(tmp_path / "projects.json")
		with pytest.raises(KeyError):
			store.switch(1, "ghost")

	def test_remove_clears_active(self, tmp_path: Path):
		project = tmp_path / "web"
		project.mkdir()
		store = ProjectStore(tmp_path / "projects.json", default_dir=tmp_path)
		store.add("web", str(project))
		store.switch(1, "web")

		assert store.remove("web")
		assert not store.remove("web")
		assert store.get_active_project_dir(1) == str(tmp_path)

	def test_persists_across_instances(self, tmp_path: Path):
		project = tmp_path / "web"
		project.mkdir()
		path = tmp_path / "projects.json"
		store = ProjectStore(path)
		store.add("web", str(project))
		store.switch(7, "web")

		reloaded = ProjectStore(path)
		reloaded.load()

		assert reloaded.list() == {"web": str(project.resolve())}
		assert reloaded.get_active_project_name(7) == "web"
