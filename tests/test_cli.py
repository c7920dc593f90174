"""Tests for the CLI module."""

import argparse
import os
import sys
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console

from claude_relay.cli import _load_persona, cmd_config, main, render_tiers
from claude_relay.config import AgentConfigManager, Config


def _env(tmp_path: Path) -> dict:
	return {
		"CLAUDE_RELAY_DATA_DIR": str(tmp_path / "data"),
		"CLAUDE_RELAY_CONFIG_DIR": str(tmp_path / "config"),
	}


def test_render_tiers_marks_changed_rows():
	"""Tiers that differ from the defaults should be starred."""
	agent_config = AgentConfigManager()
	agent_config.set_model("worker", "sonnet")
	buffer = StringIO()

	render_tiers(agent_config, Console(file=buffer, width=120))

	output = buffer.getvalue()
	assert "worker *" in output
	assert "chat *" not in output
	assert "sonnet" in output
	assert "none" in output


def test_cmd_config_updates_tier(tmp_path: Path):
	"""config --tier should persist changes to agent-config.json."""
	args = argparse.Namespace(tier="chat", model="sonnet", max_turns=4, timeout=None)
	with patch.dict(os.environ, _env(tmp_path)):
		cmd_config(args)

	reloaded = AgentConfigManager(tmp_path / "data" / "agent-config.json")
	reloaded.load()
	assert reloaded.get("chat").model == "sonnet"
	assert reloaded.get("chat").max_turns == 4


def test_cmd_config_show_only(tmp_path: Path):
	"""config without --tier should not write anything."""
	args = argparse.Namespace(tier=None, model=None, max_turns=None, timeout=None)
	with patch.dict(os.environ, _env(tmp_path)):
		cmd_config(args)

	assert not (tmp_path / "data" / "agent-config.json").exists()


def test_load_persona(tmp_path: Path):
	config = Config(config_dir=tmp_path, data_dir=tmp_path / "data")
	assert _load_persona(config) == ""

	(tmp_path / "persona.md").write_text("Terse and dry.")
	assert _load_persona(config) == "Terse and dry."


def test_main_without_command_exits():
	with patch.object(sys, "argv", ["claude-relay"]):
		with pytest.raises(SystemExit) as exc:
			main()
	assert exc.value.code == 1


def test_main_rejects_unknown_strategy():
	with patch.object(sys, "argv", ["claude-relay", "ask", "hi", "--strategy", "swarm"]):
		with pytest.raises(SystemExit) as exc:
			main()
	assert exc.value.code == 2
