"""Configuration system using platformdirs for cross-platform paths."""

import copy
import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import platformdirs

logger = logging.getLogger(__name__)

APP_NAME = "claude-relay"
APP_AUTHOR = "claude-relay"

TIERS = ("chat", "orchestrator", "worker", "executor")


@dataclass
class SupervisionSettings:
	"""Timing and sizing constants for the supervision core (seconds)."""

	executor_status_interval: float = 5.0
	orchestrator_status_interval: float = 10.0
	heartbeat_interval: float = 60.0
	stall_check_interval: float = 30.0
	stall_warning: float = 120.0
	stall_kill: float = 300.0
	retry_delay: float = 3.0
	summary_timeout: float = 30.0
	max_units: int = 10


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	sessions_file: Path = field(init=False)
	projects_file: Path = field(init=False)
	invocations_file: Path = field(init=False)
	agent_config_file: Path = field(init=False)
	log_dir: Path = field(init=False)

	# User-configurable
	claude_cli_path: str = "claude"
	claude_timeout: float = 300.0  # 0 disables the invoker default timeout
	max_turns: int = 25
	default_project_dir: Path = field(default_factory=Path.home)
	strategy: str = "plan"  # "plan" or "direct"
	status_host: str = "127.0.0.1"
	status_port: int = 3069
	telegram_token: str = ""
	allowed_chats: list[int] = field(default_factory=list)
	supervision: SupervisionSettings = field(default_factory=SupervisionSettings)

	def __post_init__(self) -> None:
		self.sessions_file = self.data_dir / "sessions.json"
		self.projects_file = self.data_dir / "projects.json"
		self.invocations_file = self.data_dir / "invocations.json"
		self.agent_config_file = self.data_dir / "agent-config.json"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


def _parse_chat_ids(raw: str) -> list[int]:
	return [int(part) for part in raw.replace(",", " ").split() if part.strip()]


def _apply_env_overrides(config: Config) -> Config:
	"""Apply CLAUDE_RELAY_* environment variable overrides."""
	path_map = {
		"CLAUDE_RELAY_CONFIG_DIR": "config_dir",
		"CLAUDE_RELAY_DATA_DIR": "data_dir",
		"CLAUDE_RELAY_DEFAULT_PROJECT_DIR": "default_project_dir",
	}
	for env_key, attr in path_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(os.path.expanduser(val)))

	if os.getenv("CLAUDE_RELAY_CLI_PATH"):
		config.claude_cli_path = os.environ["CLAUDE_RELAY_CLI_PATH"]
	if os.getenv("CLAUDE_RELAY_STRATEGY"):
		config.strategy = os.environ["CLAUDE_RELAY_STRATEGY"]
	if os.getenv("CLAUDE_RELAY_STATUS_PORT"):
		config.status_port = int(os.environ["CLAUDE_RELAY_STATUS_PORT"])
	if os.getenv("TELEGRAM_BOT_TOKEN"):
		config.telegram_token = os.environ["TELEGRAM_BOT_TOKEN"]
	if os.getenv("TELEGRAM_ALLOWED_CHATS"):
		config.allowed_chats = _parse_chat_ids(os.environ["TELEGRAM_ALLOWED_CHATS"])

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "data_dir", "default_project_dir"}
	for key, val in data.items():
		if key == "supervision" and isinstance(val, dict):
			for name, setting in val.items():
				if hasattr(config.supervision, name):
					setattr(config.supervision, name, setting)
		elif hasattr(config, key):
			if key in path_fields:
				setattr(config, key, Path(os.path.expanduser(val)))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# ==================== Agent tiers ====================


@dataclass
class TierConfig:
	"""Model, turn budget, and timeout for one agent tier."""
	model: str
	max_turns: int
	timeout: float  # seconds, 0 = unbounded


DEFAULT_TIERS: dict[str, TierConfig] = {
	"chat": TierConfig(model="haiku", max_turns=3, timeout=30.0),
	"orchestrator": TierConfig(model="opus", max_turns=1, timeout=120.0),
	"worker": TierConfig(model="opus", max_turns=50, timeout=0.0),
	"executor": TierConfig(model="opus", max_turns=50, timeout=0.0),
}


class AgentConfigManager:
	"""Per-tier agent settings persisted to agent-config.json."""

	def __init__(self, path: Optional[Path] = None):
		self.path = path
		self._tiers = copy.deepcopy(DEFAULT_TIERS)

	def load(self) -> None:
		"""Merge saved tier settings over the defaults."""
		if not self.path or not self.path.exists():
			logger.info("No existing agent config, using defaults")
			return
		try:
			with open(self.path) as f:
				data = json.load(f)
		except (json.JSONDecodeError, IOError) as e:
			logger.warning(f"Agent config unreadable, using defaults: {e}")
			return

		for tier, values in data.items():
			if tier not in self._tiers or not isinstance(values, dict):
				continue
			current = asdict(self._tiers[tier])
			current.update({k: v for k, v in values.items() if k in current})
			self._tiers[tier] = TierConfig(**current)
		logger.info("Agent config loaded")

	def save(self) -> None:
		if not self.path:
			return
		self.path.parent.mkdir(parents=True, exist_ok=True)
		with open(self.path, "w") as f:
			json.dump(self.all(), f, indent=2)
		logger.debug("Agent config saved")

	def get(self, tier: str) -> TierConfig:
		if tier not in self._tiers:
			raise KeyError(f"Unknown agent tier: {tier}")
		return copy.copy(self._tiers[tier])

	def set_model(self, tier: str, model: str) -> None:
		self._tiers[tier].model = model

	def set_max_turns(self, tier: str, turns: int) -> None:
		self._tiers[tier].max_turns = turns

	def set_timeout(self, tier: str, seconds: float) -> None:
		self._tiers[tier].timeout = seconds

	def all(self) -> dict[str, dict]:
		return {tier: asdict(cfg) for tier, cfg in self._tiers.items()}

	def defaults(self) -> dict[str, dict]:
		return {tier: asdict(cfg) for tier, cfg in DEFAULT_TIERS.items()}
