"""Page lifecycle signals: visibility changes and unload.

The host (a browser bridge, a server-side page session, or a test) drives
``set_visibility()`` and ``unload()``; subscribers such as the telemetry
pipeline register handlers to flush buffered work. Delivery is best-effort:
handlers run in registration order, a failing handler is logged and the
rest still run, and nothing guarantees the host waits for completion
before tearing the page down.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[[], Awaitable[Any] | Any]

VISIBLE = "visible"
HIDDEN = "hidden"


class PageLifecycle:
    """In-process lifecycle event source."""

    def __init__(self) -> None:
        self._hidden_handlers: list[Handler] = []
        self._unload_handlers: list[Handler] = []
        self.visibility: str = VISIBLE
        self.unloaded = False

    def on_hidden(self, handler: Handler) -> Handler:
        self._hidden_handlers.append(handler)
        return handler

    def on_unload(self, handler: Handler) -> Handler:
        self._unload_handlers.append(handler)
        return handler

    async def set_visibility(self, state: str) -> None:
        """Record a visibility change; fires hidden handlers on ``visible -> hidden`` only."""
        if state not in (VISIBLE, HIDDEN):
            raise ValueError(f"Unknown visibility state: {state!r}")
        if state == self.visibility:
            return
        self.visibility = state
        if state == HIDDEN:
            await self._dispatch("hidden", self._hidden_handlers)

    async def unload(self) -> None:
        """Fire unload handlers once."""
        if self.unloaded:
            return
        self.unloaded = True
        await self._dispatch("unload", self._unload_handlers)

    @staticmethod
    async def _dispatch(signal: str, handlers: list[Handler]) -> None:
        for handler in list(handlers):
            try:
                result = handler()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Lifecycle %s handler %r failed", signal, handler, exc_info=True)
