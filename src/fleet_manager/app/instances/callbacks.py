"""Create-callback correlation registry.

``LifecycleEngine.create`` returns as soon as the fabric accepts the
deployment. The caller's completion handler is parked here under an opaque
callback id and fired later by whichever report path finishes the create:
the fabric's deployment webhook (error) or the game server's READY action
(success). Both paths can race on the same id, so resolution is a locked
test-and-set: the first resolver pops the handler, every later resolver
finds nothing and returns ``False``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from fleet_manager.observability.metrics import CREATE_CALLBACKS_RESOLVED_TOTAL

from .errors import DuplicateCallbackError
from .models import Instance

logger = logging.getLogger(__name__)


class CreateOutcome(str, Enum):
    SUCCESS = 'success'
    TIMEOUT = 'timeout'
    ERROR = 'error'


@dataclass(frozen=True, slots=True)
class CreateResult:
    """Terminal outcome delivered to a create handler."""

    callback_id: str
    outcome: CreateOutcome
    instance: Instance | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is CreateOutcome.SUCCESS


CreateCallback = Callable[[CreateResult], None]


class CallbackRegistry:
    """Thread-safe, exactly-once handler registry keyed by callback id."""

    def __init__(self) -> None:
        self._handlers: dict[str, CreateCallback] = {}
        self._lock = threading.Lock()

    def generate_id(self) -> str:
        return uuid.uuid4().hex

    def register(self, callback_id: str, handler: CreateCallback) -> None:
        with self._lock:
            if callback_id in self._handlers:
                raise DuplicateCallbackError(callback_id)
            self._handlers[callback_id] = handler

    def is_pending(self, callback_id: str) -> bool:
        with self._lock:
            return callback_id in self._handlers

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def resolve(
        self,
        callback_id: str,
        outcome: CreateOutcome,
        *,
        instance: Instance | None = None,
        error: Exception | None = None,
    ) -> bool:
        """Fire and discard the handler for ``callback_id``.

        Returns ``True`` for the one call that invoked the handler. Unknown
        and already-resolved ids are a no-op.
        """
        with self._lock:
            handler = self._handlers.pop(callback_id, None)

        if handler is None:
            logger.debug(
                "Callback %s already resolved or unknown (outcome=%s)",
                callback_id,
                outcome.value,
                extra={"callback_id": callback_id},
            )
            return False

        CREATE_CALLBACKS_RESOLVED_TOTAL.labels(outcome=outcome.value).inc()
        result = CreateResult(
            callback_id=callback_id,
            outcome=outcome,
            instance=instance,
            error=error,
        )
        try:
            handler(result)
        except Exception:
            # Caller code must not break the report path that resolved it.
            logger.exception(
                "Create callback %s raised while handling outcome=%s",
                callback_id,
                outcome.value,
                extra={"callback_id": callback_id},
            )
        return True


def future_callback(future: asyncio.Future[CreateResult]) -> CreateCallback:
    """Adapt an asyncio future into a create handler.

    The handler may be fired from any thread; the result is handed to the
    future's own loop.
    """
    loop = future.get_loop()

    def _set(result: CreateResult) -> None:
        if not future.done():
            future.set_result(result)

    def handler(result: CreateResult) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            _set(result)
        else:
            loop.call_soon_threadsafe(_set, result)

    return handler
