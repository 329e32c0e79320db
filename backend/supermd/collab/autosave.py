"""Debounced persistence of document text."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger("collab")

SaveCallback = Callable[[str], Awaitable[None]]


class DebouncedSaver:
    """Persist only after edits have been quiet for ``delay_seconds``.

    Every ``schedule`` call restarts the timer with the newest text.
    """

    def __init__(self, save: SaveCallback, delay_seconds: float = 2.0) -> None:
        self._save = save
        self.delay_seconds = delay_seconds
        self._pending_text: str | None = None
        self._timer: asyncio.Task[None] | None = None
        self._saving = False
        self.save_count = 0

    @property
    def has_pending(self) -> bool:
        return self._pending_text is not None

    def schedule(self, text: str) -> None:
        self._pending_text = text
        # A timer already inside the save callback runs to completion
        if self._timer is not None and not self._timer.done() and not self._saving:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._run_after_delay())

    async def flush(self) -> None:
        """Save pending text now instead of waiting for the timer."""
        if self._timer is not None and not self._timer.done():
            if self._saving:
                await self._timer
            else:
                self._timer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._timer
        self._timer = None
        await self._save_pending()

    async def close(self) -> None:
        await self.flush()

    async def _run_after_delay(self) -> None:
        await asyncio.sleep(self.delay_seconds)
        await self._save_pending()

    async def _save_pending(self) -> None:
        text = self._pending_text
        if text is None:
            return
        self._pending_text = None
        self._saving = True
        try:
            await self._save(text)
        except Exception as exc:
            # Keep the text so the next flush retries it
            if self._pending_text is None:
                self._pending_text = text
            logger.warning(
                "Autosave failed",
                extra={"service": "collab", "error": str(exc)},
            )
            return
        finally:
            self._saving = False
        self.save_count += 1
