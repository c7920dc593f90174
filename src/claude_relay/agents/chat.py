"""
Chat Agent - the user-facing tier.

Every incoming message goes through one chat invocation. The reply is either
plain conversation, or conversation plus an action block asking for real work.
"""

import json
import logging
import re
from typing import Optional

from ..cancellation import Cancellation
from ..config import AgentConfigManager
from ..invoker import ClaudeInvoker, InvocationHook, InvocationRequest
from ..sessions import SessionStore
from .models import ChatResponse, WorkRequest
from .prompts import ACTION_TAG, build_chat_system_prompt

logger = logging.getLogger(__name__)

ACTION_PATTERN = re.compile(rf"<{ACTION_TAG}>([\s\S]*?)</{ACTION_TAG}>")
DEFAULT_ACK = "Working on it..."


def parse_chat_response(text: str) -> tuple[str, Optional[WorkRequest]]:
	"""
	Split a chat reply into user-facing text and an optional work request.

	A malformed or invalid action block is ignored and the whole reply is
	treated as chat.
	"""
	match = ACTION_PATTERN.search(text)
	if not match:
		return text, None

	chat_text = ACTION_PATTERN.sub("", text, count=1).strip()

	try:
		action = json.loads(match.group(1).strip())
	except json.JSONDecodeError as e:
		logger.warning(f"Failed to parse action block JSON: {e}")
		return text, None

	if not isinstance(action, dict) or action.get("type") != "work_request" or not action.get("task"):
		logger.warning(f"Invalid action block from chat agent, ignoring: {match.group(1)[:200]}")
		return text, None

	return chat_text or DEFAULT_ACK, WorkRequest.from_dict(action)


class ChatAgent:
	"""Classifies messages into chat or work, keeping a per-conversation session."""

	def __init__(
		self,
		invoker: ClaudeInvoker,
		agent_config: AgentConfigManager,
		sessions: SessionStore,
		persona: str = "",
	):
		self.invoker = invoker
		self.agent_config = agent_config
		self.sessions = sessions
		self.system_prompt = build_chat_system_prompt(persona)

	async def classify(
		self,
		conversation_id: int,
		prompt: str,
		cwd: str,
		cancellation: Optional[Cancellation] = None,
		on_invocation: Optional[InvocationHook] = None,
	) -> ChatResponse:
		"""
		Run one chat invocation for a message.

		Raises:
			CLIBridgeError: The invocation itself failed
		"""
		tier = self.agent_config.get("chat")
		session_id = self.sessions.get_session_id(conversation_id, "chat")

		result = await self.invoker.invoke(
			InvocationRequest(
				prompt=prompt,
				cwd=cwd,
				session_id=session_id,
				system_prompt=self.system_prompt,
				model=tier.model,
				max_turns=tier.max_turns,
				timeout=tier.timeout,
				cancellation=cancellation,
			),
			on_invocation=on_invocation,
		)

		if result.session_id:
			self.sessions.set_session_id(conversation_id, result.session_id, cwd, "chat")

		chat_text, work_request = parse_chat_response(result.result)
		logger.info(
			f"Chat response for {conversation_id}: action={work_request is not None}, "
			f"length={len(chat_text)}"
		)
		return ChatResponse(chat_text=chat_text, work_request=work_request, invocation=result)
