"""CLI for claude-relay: run, ask, and config commands."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .config import TIERS, AgentConfigManager, Config, load_config
from .logging_config import setup_logging
from .relay import Relay

logger = logging.getLogger(__name__)

TERMINAL_CONVERSATION_ID = 0
PERSONA_FILE = "persona.md"


def _load_persona(config: Config) -> str:
	path = Path(config.config_dir) / PERSONA_FILE
	if not path.exists():
		return ""
	return path.read_text()


def _build_relay(config: Config) -> Relay:
	relay = Relay(config, persona=_load_persona(config))
	relay.load()
	return relay


async def _run(config: Config) -> None:
	from .telegram_bot import RelayBot
	from .web import create_app, serve_status

	relay = _build_relay(config)
	bot = RelayBot(relay, config.telegram_token, config.allowed_chats)
	app = create_app(relay.registry, relay.invocation_log, relay.agent_config)

	await bot.start()
	status_task = asyncio.create_task(serve_status(app, config.status_host, config.status_port))
	try:
		await status_task
	finally:
		status_task.cancel()
		await asyncio.gather(status_task, return_exceptions=True)
		await bot.stop()
		relay.registry.close()


def cmd_run(args: argparse.Namespace) -> None:
	"""Run the Telegram bot and the status server."""
	config = load_config()
	setup_logging(level=args.log_level, log_dir=config.log_dir)
	if args.strategy:
		config.strategy = args.strategy
	if not config.telegram_token:
		print("Error: TELEGRAM_BOT_TOKEN not set")
		print("Set it in .env file or as environment variable")
		sys.exit(1)

	print(f"Starting claude-relay ({config.strategy} strategy)...")
	print(f"Status server: http://{config.status_host}:{config.status_port}")
	try:
		asyncio.run(_run(config))
	except KeyboardInterrupt:
		print("\nStopped.")


async def _ask(config: Config, prompt: str, console: Console) -> None:
	relay = _build_relay(config)

	async def reply(text: str) -> None:
		console.print(text)

	cancellation = relay.locks.lock(TERMINAL_CONVERSATION_ID)
	try:
		await relay.handle_message(TERMINAL_CONVERSATION_ID, prompt, reply, cancellation=cancellation)
	finally:
		relay.locks.unlock(TERMINAL_CONVERSATION_ID, cancellation)
		relay.registry.close()


def cmd_ask(args: argparse.Namespace) -> None:
	"""Send one message through the relay and print every reply."""
	config = load_config()
	setup_logging(level=args.log_level)
	if args.strategy:
		config.strategy = args.strategy
	console = Console()
	try:
		asyncio.run(_ask(config, " ".join(args.prompt), console))
	except KeyboardInterrupt:
		console.print("[yellow]Cancelled.[/yellow]")


def render_tiers(agent_config: AgentConfigManager, console: Console) -> None:
	"""Render the per-tier agent settings as a table."""
	defaults = agent_config.defaults()
	table = Table(title="Agent Tiers")
	table.add_column("Tier", style="cyan")
	table.add_column("Model")
	table.add_column("Max Turns", justify="right")
	table.add_column("Timeout", justify="right")

	for tier, cfg in agent_config.all().items():
		changed = cfg != defaults.get(tier)
		timeout = "none" if not cfg["timeout"] else f"{cfg['timeout']:g}s"
		table.add_row(
			f"{tier}{' *' if changed else ''}",
			cfg["model"],
			str(cfg["max_turns"]),
			timeout,
		)
	console.print(table)


def cmd_config(args: argparse.Namespace) -> None:
	"""Show or change per-tier agent settings."""
	config = load_config()
	agent_config = AgentConfigManager(config.agent_config_file)
	agent_config.load()
	console = Console()

	if args.tier:
		if args.model:
			agent_config.set_model(args.tier, args.model)
		if args.max_turns is not None:
			agent_config.set_max_turns(args.tier, args.max_turns)
		if args.timeout is not None:
			agent_config.set_timeout(args.tier, args.timeout)
		agent_config.save()
		console.print(f"[green]Updated {args.tier}[/green]")

	render_tiers(agent_config, console)
	console.print(f"[dim]Config dir: {config.config_dir}[/dim]")
	console.print(f"[dim]Data dir:   {config.data_dir}[/dim]")
	console.print(f"[dim]Strategy:   {config.strategy}[/dim]")


def main() -> None:
	"""CLI entry point."""
	load_dotenv()

	parser = argparse.ArgumentParser(
		prog="claude-relay",
		description="Chat bridge that routes messages to Claude CLI agents",
	)
	parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING or ERROR")
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Run the Telegram bot and status server")
	run_parser.add_argument("--strategy", choices=["plan", "direct"], default=None, help="Work strategy")
	run_parser.set_defaults(func=cmd_run)

	# ask
	ask_parser = subparsers.add_parser("ask", help="Send one message from the terminal")
	ask_parser.add_argument("prompt", nargs="+", help="Message text")
	ask_parser.add_argument("--strategy", choices=["plan", "direct"], default=None, help="Work strategy")
	ask_parser.set_defaults(func=cmd_ask)

	# config
	config_parser = subparsers.add_parser("config", help="Show or change agent tier settings")
	config_parser.add_argument("--tier", choices=TIERS, default=None, help="Tier to change")
	config_parser.add_argument("--model", type=str, default=None, help="Model name")
	config_parser.add_argument("--max-turns", type=int, default=None, help="Turn budget")
	config_parser.add_argument("--timeout", type=float, default=None, help="Timeout in seconds (0 = none)")
	config_parser.set_defaults(func=cmd_config)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
