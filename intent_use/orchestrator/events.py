import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

EXECUTION_STARTED = 'execution-started'
STEP_STARTED = 'step-started'
FALLBACK_STARTED = 'fallback-started'
FALLBACK_COMPLETED = 'fallback-completed'
STEP_COMPLETED = 'step-completed'
SCREENSHOT_COMPARISON = 'screenshot-comparison'
EXECUTION_COMPLETED = 'execution-completed'
EXECUTION_FAILED = 'execution-failed'
EXECUTION_STOPPED = 'execution-stopped'

ALL_EVENTS = (
	EXECUTION_STARTED,
	STEP_STARTED,
	FALLBACK_STARTED,
	FALLBACK_COMPLETED,
	STEP_COMPLETED,
	SCREENSHOT_COMPARISON,
	EXECUTION_COMPLETED,
	EXECUTION_FAILED,
	EXECUTION_STOPPED,
)

EventListener = Callable[[Any], None]


class EventDispatcher:
	"""Synchronous dispatch table from event name to registered listeners.

	Listeners run in registration order on the caller's thread. A listener that
	raises is logged and skipped; it never interrupts the emitter.
	"""

	def __init__(self) -> None:
		self._listeners: Dict[str, List[EventListener]] = {}

	def on(self, event: str, listener: EventListener) -> None:
		if event not in ALL_EVENTS:
			raise ValueError(f'Unknown event: {event!r}')
		self._listeners.setdefault(event, []).append(listener)

	def off(self, event: str, listener: EventListener) -> None:
		listeners = self._listeners.get(event, [])
		if listener in listeners:
			listeners.remove(listener)

	def listener_count(self, event: str) -> int:
		return len(self._listeners.get(event, []))

	def emit(self, event: str, payload: Any = None) -> None:
		for listener in list(self._listeners.get(event, [])):
			try:
				listener(payload)
			except Exception as e:
				logger.warning(f'Listener for {event} raised {type(e).__name__}: {e}')
