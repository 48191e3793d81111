"""OS timer collaborator: one-shot, wake-capable callbacks keyed by a stable id."""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

FireHandler = Callable[[Mapping[str, Any]], None]


class TimerService(ABC):
    """Arms and cancels one-shot timers. Timers do not survive the process."""

    @abstractmethod
    def can_schedule_exact(self) -> bool:
        """Whether precise-to-the-minute timers are currently permitted."""
        pass

    @abstractmethod
    def arm(self, key: str, fire_at: datetime, payload: Mapping[str, Any], exact: bool = True) -> None:
        """
        Arm (or replace) the timer for key.

        Raises:
            PermissionError: If exact is requested but not permitted.
        """
        pass

    @abstractmethod
    def cancel(self, key: str) -> bool:
        """Cancel the pending timer for key. Returns False if none was pending."""
        pass


class ThreadingTimerService(TimerService):
    """
    In-process timers on threading.Timer.

    Inexact timers fire up to `inexact_slack_seconds` late, standing in for
    a platform's batched delivery.
    """

    def __init__(
        self,
        handler: Optional[FireHandler] = None,
        allow_exact: bool = True,
        inexact_slack_seconds: float = 60.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.handler = handler
        self.allow_exact = allow_exact
        self.inexact_slack_seconds = inexact_slack_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._timers: Dict[str, threading.Timer] = {}

    def set_handler(self, handler: FireHandler) -> None:
        self.handler = handler

    def can_schedule_exact(self) -> bool:
        return self.allow_exact

    def arm(self, key: str, fire_at: datetime, payload: Mapping[str, Any], exact: bool = True) -> None:
        if exact and not self.allow_exact:
            raise PermissionError("Exact timers are not permitted")

        delay = max((fire_at - self.clock()).total_seconds(), 0.0)
        if not exact:
            delay += self.inexact_slack_seconds

        timer = threading.Timer(delay, self._fire, args=(key, dict(payload)))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
        timer.start()
        logger.debug(f"Armed {'exact' if exact else 'inexact'} timer {key} in {delay:.0f}s")

    def cancel(self, key: str) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _fire(self, key: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            # A re-arm may already have replaced this timer
            if self._timers.get(key) is threading.current_thread():
                del self._timers[key]
        if self.handler is None:
            logger.warning(f"Timer {key} fired with no handler")
            return
        try:
            self.handler(payload)
        except Exception as e:
            logger.error(f"Timer handler failed for {key}: {e}", exc_info=True)
