"""
Cancellation signals shared between the transport and the supervision core.

A Cancellation can be fired once. Children derived with child() fire when
their parent fires, but firing a child leaves the parent and its siblings
untouched.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Cancellation:
	"""One-shot cancellation signal with parent-to-child propagation."""

	def __init__(self, parent: Optional["Cancellation"] = None):
		self._cancelled = False
		self._reason: Optional[str] = None
		self._event: Optional[asyncio.Event] = None
		self._callbacks: list[Callable[[], None]] = []
		self._parent = parent
		if parent is not None:
			if parent.cancelled:
				self.cancel(parent.reason)
			else:
				parent.add_callback(self._on_parent_cancel)

	@property
	def cancelled(self) -> bool:
		return self._cancelled

	@property
	def reason(self) -> Optional[str]:
		return self._reason

	def cancel(self, reason: Optional[str] = None) -> bool:
		"""Fire the signal. Returns False if it had already fired."""
		if self._cancelled:
			return False
		self._cancelled = True
		self._reason = reason
		if self._event is not None:
			self._event.set()
		callbacks, self._callbacks = self._callbacks, []
		for callback in callbacks:
			try:
				callback()
			except Exception as e:
				logger.error(f"Cancellation callback failed: {e}")
		return True

	def add_callback(self, callback: Callable[[], None]) -> None:
		"""Run callback when the signal fires (immediately if it already has)."""
		if self._cancelled:
			callback()
			return
		self._callbacks.append(callback)

	def remove_callback(self, callback: Callable[[], None]) -> None:
		if callback in self._callbacks:
			self._callbacks.remove(callback)

	def child(self) -> "Cancellation":
		"""Derive a signal that fires with this one but can be fired alone."""
		return Cancellation(parent=self)

	def detach(self) -> None:
		"""Stop listening to the parent. Call when the child's work is done."""
		if self._parent is not None:
			self._parent.remove_callback(self._on_parent_cancel)
			self._parent = None

	async def wait(self) -> None:
		"""Block until the signal fires."""
		if self._event is None:
			self._event = asyncio.Event()
			if self._cancelled:
				self._event.set()
		await self._event.wait()

	def _on_parent_cancel(self) -> None:
		reason = self._parent.reason if self._parent is not None else None
		self.cancel(reason)
