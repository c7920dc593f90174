"""
Telegram transport for claude-relay.

Commands:
	/start - Greeting and command list
	/help - Show available commands
	/status - Project, session and processing state
	/reset - Clear the conversation's Claude sessions
	/cancel - Abort the running request
	/kill <n> - Kill worker #n of the running orchestration
	/retry <n> - Retry failed or killed worker #n
	/model - Show the agent tier settings
	/project list|add|switch|remove - Manage project directories
	/agents - Show live agents

Messages:
	Any non-command message goes through the chat agent, and on to a
	supervisor when it asks for work.
"""

import asyncio
import logging
import time
from typing import Optional

from telegram import Update
from telegram.ext import (
	Application,
	CommandHandler,
	ContextTypes,
	MessageHandler,
	filters,
)

from .agents.models import AgentRole
from .agents.monitor import format_duration
from .cancellation import Cancellation
from .relay import Relay

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096

HELP_TEXT = (
	"*Commands:*\n"
	"/status - Session & project info\n"
	"/reset - Clear conversation context\n"
	"/cancel - Abort the current request\n"
	"/kill <n> - Kill worker #n\n"
	"/retry <n> - Retry failed/killed worker #n\n"
	"/model - Show agent model config\n"
	"/agents - Show running agents\n"
	"/project list - Show projects\n"
	"/project add <name> <path> - Add project\n"
	"/project switch <name> - Switch project\n"
	"/project remove <name> - Remove project\n\n"
	"Just send a text message to chat with Claude."
)


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
	"""Split text into chunks Telegram accepts, preferring line boundaries."""
	if len(text) <= limit:
		return [text]
	chunks = []
	remaining = text
	while len(remaining) > limit:
		cut = remaining.rfind("\n", 0, limit)
		if cut <= 0:
			cut = limit
		chunks.append(remaining[:cut])
		remaining = remaining[cut:].lstrip("\n")
	if remaining:
		chunks.append(remaining)
	return chunks


def _parse_worker_number(args: list[str]) -> Optional[int]:
	if not args:
		return None
	try:
		number = int(args[0])
	except ValueError:
		return None
	return number if number >= 1 else None


class RelayBot:
	"""Telegram front end for a Relay."""

	def __init__(self, relay: Relay, token: str, allowed_chats: Optional[list[int]] = None):
		self.relay = relay
		self.token = token
		self.allowed_chats = set(allowed_chats or [])
		self.app: Optional[Application] = None
		self._tasks: set[asyncio.Task] = set()

	# ==================== Lifecycle ====================

	def build_application(self) -> Application:
		app = Application.builder().token(self.token).build()

		app.add_handler(CommandHandler("start", self._cmd_start))
		app.add_handler(CommandHandler("help", self._cmd_help))
		app.add_handler(CommandHandler("status", self._cmd_status))
		app.add_handler(CommandHandler("reset", self._cmd_reset))
		app.add_handler(CommandHandler("cancel", self._cmd_cancel))
		app.add_handler(CommandHandler("kill", self._cmd_kill))
		app.add_handler(CommandHandler("retry", self._cmd_retry))
		app.add_handler(CommandHandler("model", self._cmd_model))
		app.add_handler(CommandHandler("project", self._cmd_project))
		app.add_handler(CommandHandler("agents", self._cmd_agents))

		app.add_handler(
			MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message)
		)
		return app

	async def start(self) -> None:
		"""Initialize the application and start polling."""
		self.app = self.build_application()
		await self.app.initialize()
		await self.app.start()
		await self.app.updater.start_polling(drop_pending_updates=True)
		logger.info("Telegram bot polling")

	async def stop(self) -> None:
		self.relay.locks.cancel_all()
		for task in list(self._tasks):
			task.cancel()
		if self._tasks:
			await asyncio.gather(*self._tasks, return_exceptions=True)

		if self.app:
			if self.app.updater and self.app.updater.running:
				await self.app.updater.stop()
			await self.app.stop()
			await self.app.shutdown()
		logger.info("Telegram bot stopped")

	def _allowed(self, update: Update) -> bool:
		chat = update.effective_chat
		if chat is None:
			return False
		if self.allowed_chats and chat.id not in self.allowed_chats:
			logger.warning(f"Ignoring message from unauthorized chat {chat.id}")
			return False
		return True

	async def _send(self, chat_id: int, text: str) -> None:
		"""Send text to a chat, split to Telegram's size limit."""
		if not self.app:
			return
		for chunk in split_message(text or "(empty response)"):
			await self.app.bot.send_message(chat_id=chat_id, text=chunk)

	# ==================== Command Handlers ====================

	async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /start - Greeting."""
		if not self._allowed(update):
			return
		await update.message.reply_text(
			"Claude Relay is ready. Send me a message and I'll pass it to Claude.\n\n"
			f"Chat ID: {update.effective_chat.id}\n\n"
			"Use /help to see the commands."
		)

	async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /help - Show commands."""
		if not self._allowed(update):
			return
		await update.message.reply_text(HELP_TEXT, parse_mode="Markdown")

	async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /status - Project, session and processing state."""
		if not self._allowed(update):
			return
		chat_id = update.effective_chat.id
		relay = self.relay
		record = relay.sessions.get(chat_id, "chat")
		lines = [
			"Status:",
			f"Project: {relay.projects.get_active_project_name(chat_id) or '(default)'}",
			f"Directory: {relay.projects.get_active_project_dir(chat_id)}",
			f"Session: {record.session_id[:8] + '...' if record else 'none'}",
			f"Processing: {'yes' if relay.locks.is_locked(chat_id) else 'no'}",
			f"Strategy: {relay.config.strategy}",
		]
		if record:
			lines.append(f"Last used: {record.updated_at}")
		await update.message.reply_text("\n".join(lines))

	async def _cmd_reset(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /reset - Clear sessions."""
		if not self._allowed(update):
			return
		self.relay.sessions.clear(update.effective_chat.id)
		await update.message.reply_text("Session cleared. Next message starts fresh.")

	async def _cmd_cancel(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /cancel - Abort the running request."""
		if not self._allowed(update):
			return
		if self.relay.locks.cancel(update.effective_chat.id):
			await update.message.reply_text("Request cancelled.")
		else:
			await update.message.reply_text("Nothing to cancel.")

	async def _cmd_kill(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /kill <n> - Kill one worker."""
		if not self._allowed(update):
			return
		chat_id = update.effective_chat.id
		number = _parse_worker_number(context.args or [])
		if number is None:
			await update.message.reply_text("Usage: /kill <worker_number>\nExample: /kill 3")
			return

		registry = self.relay.registry
		orchestrator = registry.active_orchestrator_for(chat_id)
		if orchestrator is None:
			await update.message.reply_text("No active orchestration running in this chat.")
			return

		handle = registry.kill_worker(orchestrator.id, number)
		if handle is None:
			workers = registry.workers_for(orchestrator.id)
			if not workers:
				await update.message.reply_text("No active workers found.")
				return
			available = "\n".join(
				f"  #{h.worker_number}: {h.task_description}" for h in workers.values()
			)
			await update.message.reply_text(f"Worker #{number} not found. Active workers:\n{available}")
			return

		logger.info(f"Worker #{number} of {orchestrator.id} killed by chat {chat_id}")
		await update.message.reply_text(f"Killed worker #{number}: {handle.task_description}")

	async def _cmd_retry(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /retry <n> - Retry one failed worker in the background."""
		if not self._allowed(update):
			return
		chat_id = update.effective_chat.id
		number = _parse_worker_number(context.args or [])
		if number is None:
			await update.message.reply_text("Usage: /retry <worker_number>\nExample: /retry 3")
			return

		registry = self.relay.registry
		orchestrator = registry.active_orchestrator_for(chat_id)
		if orchestrator is None:
			await update.message.reply_text("No active orchestration running in this chat.")
			return
		if not registry.has_retry_handler(orchestrator.id):
			await update.message.reply_text("Retry is not available for this orchestration.")
			return
		found = registry.retryable_worker(orchestrator.id, number)
		if found is None:
			await update.message.reply_text(
				f"Worker #{number} not found or was not killed/failed. "
				"Only killed or failed workers can be retried."
			)
			return

		await update.message.reply_text(f"Retrying worker #{number}: {found[1].task_description}")
		logger.info(f"Worker #{number} retry requested by chat {chat_id}")

		async def run_retry() -> None:
			try:
				result = await registry.retry_worker(orchestrator.id, number)
			except Exception as e:
				logger.error(f"Retry of worker #{number} errored: {e}")
				await self._send(chat_id, f"Retry of worker #{number} errored: {e}")
				return
			if result is None:
				await self._send(chat_id, f"Failed to retry worker #{number}: worker not found.")
				return
			outcome = "succeeded" if result.success else "failed"
			await self._send(chat_id, f"Retry of worker #{number} {outcome}: {result.result[:500]}")

		self._spawn(run_retry())

	async def _cmd_model(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /model - Show tier settings."""
		if not self._allowed(update):
			return
		lines = ["Agent models:"]
		for tier, cfg in self.relay.agent_config.all().items():
			timeout = "no timeout" if not cfg["timeout"] else format_duration(cfg["timeout"])
			lines.append(f"{tier.capitalize()}: {cfg['model']} ({cfg['max_turns']} turns, {timeout})")
		await update.message.reply_text("\n".join(lines))

	async def _cmd_project(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /project - list, add, switch, remove."""
		if not self._allowed(update):
			return
		chat_id = update.effective_chat.id
		projects = self.relay.projects
		args = context.args or []
		subcommand = args[0].lower() if args else "list"

		if subcommand == "list":
			listed = projects.list()
			if not listed:
				await update.message.reply_text("No projects configured. Use /project add <name> <path> to add one.")
				return
			active = projects.get_active_project_name(chat_id)
			lines = ["Projects:"]
			for name, path in listed.items():
				marker = " (active)" if name == active else ""
				lines.append(f"{name}{marker} -> {path}")
			await update.message.reply_text("\n".join(lines))
			return

		if subcommand == "add":
			if len(args) < 3:
				await update.message.reply_text("Usage: /project add <name> <path>")
				return
			name, path = args[1], " ".join(args[2:])
			try:
				resolved = projects.add(name, path)
			except ValueError as e:
				await update.message.reply_text(str(e))
				return
			await update.message.reply_text(f"Project {name} added -> {resolved}")
			return

		if subcommand == "switch":
			if len(args) < 2:
				await update.message.reply_text("Usage: /project switch <name>")
				return
			try:
				path = projects.switch(chat_id, args[1])
			except KeyError:
				await update.message.reply_text(f"Project {args[1]} not found.")
				return
			self.relay.sessions.clear(chat_id)
			await update.message.reply_text(f"Switched to {args[1]} ({path}). Session cleared.")
			return

		if subcommand == "remove":
			if len(args) < 2:
				await update.message.reply_text("Usage: /project remove <name>")
				return
			if projects.remove(args[1]):
				await update.message.reply_text(f"Project {args[1]} removed.")
			else:
				await update.message.reply_text(f"Project {args[1]} not found.")
			return

		await update.message.reply_text("Unknown subcommand. Use: list, add, switch, remove")

	async def _cmd_agents(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Handle /agents - Show live agents."""
		if not self._allowed(update):
			return
		agents = self.relay.registry.active_agents()
		if not agents:
			await update.message.reply_text("No agents running.")
			return
		now = time.time()
		lines = ["Running agents:"]
		for agent in agents:
			indent = "  " if agent.role == AgentRole.WORKER else ""
			progress = f" [{agent.progress}]" if agent.progress else ""
			lines.append(
				f"{indent}{agent.phase.value}{progress} {agent.description[:80]} "
				f"({format_duration(now - agent.started_at)})"
			)
		await update.message.reply_text("\n".join(lines))

	# ==================== Message Handlers ====================

	async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
		"""Hand a text message to the relay without blocking the update loop."""
		if not self._allowed(update) or not update.message or not update.message.text:
			return
		chat_id = update.effective_chat.id
		locks = self.relay.locks
		if locks.is_locked(chat_id):
			await update.message.reply_text("Still processing a previous request. Use /cancel to abort it.")
			return

		cancellation = locks.lock(chat_id)
		self._spawn(self._process(chat_id, update.message.text, cancellation))

	async def _process(self, chat_id: int, text: str, cancellation: Cancellation) -> None:
		async def reply(message: str) -> None:
			await self._send(chat_id, message)

		try:
			await self.relay.handle_message(chat_id, text, reply, cancellation=cancellation)
		except Exception as e:
			logger.error(f"Error handling message from {chat_id}: {e}")
			try:
				await self._send(chat_id, f"Error: {e}")
			except Exception as send_error:
				logger.error(f"Failed to send error to {chat_id}: {send_error}")
		finally:
			self.relay.locks.unlock(chat_id, cancellation)

	def _spawn(self, coro) -> None:
		task = asyncio.create_task(coro)
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
