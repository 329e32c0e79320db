"""Tests for debounced document persistence."""

import asyncio

import pytest

from supermd.collab.autosave import DebouncedSaver


class TestDebouncedSaver:
    """Test DebouncedSaver timing and retry behavior."""

    @pytest.mark.asyncio
    async def test_only_latest_text_is_saved_after_quiet_period(self):
        saved: list[str] = []

        async def save(text: str) -> None:
            saved.append(text)

        saver = DebouncedSaver(save, delay_seconds=0.05)
        saver.schedule("a")
        saver.schedule("ab")
        saver.schedule("abc")
        await asyncio.sleep(0.15)

        assert saved == ["abc"]
        assert saver.save_count == 1
        assert saver.has_pending is False

    @pytest.mark.asyncio
    async def test_flush_saves_immediately(self):
        saved: list[str] = []

        async def save(text: str) -> None:
            saved.append(text)

        saver = DebouncedSaver(save, delay_seconds=10)
        saver.schedule("draft")
        await saver.flush()

        assert saved == ["draft"]

    @pytest.mark.asyncio
    async def test_flush_without_pending_text_is_noop(self):
        calls = 0

        async def save(text: str) -> None:
            nonlocal calls
            calls += 1

        saver = DebouncedSaver(save)
        await saver.flush()

        assert calls == 0

    @pytest.mark.asyncio
    async def test_failed_save_is_retried_on_next_flush(self):
        attempts: list[str] = []

        async def flaky_save(text: str) -> None:
            attempts.append(text)
            if len(attempts) == 1:
                raise ConnectionError("database down")

        saver = DebouncedSaver(flaky_save, delay_seconds=10)
        saver.schedule("text")
        await saver.flush()

        assert saver.has_pending is True
        assert saver.save_count == 0

        await saver.close()

        assert attempts == ["text", "text"]
        assert saver.save_count == 1

    @pytest.mark.asyncio
    async def test_edit_during_save_is_not_lost(self):
        saved: list[str] = []
        release = asyncio.Event()

        async def slow_save(text: str) -> None:
            await release.wait()
            saved.append(text)

        saver = DebouncedSaver(slow_save, delay_seconds=0)
        saver.schedule("first")
        await asyncio.sleep(0.01)
        saver.schedule("second")
        release.set()
        await saver.flush()

        assert saved[-1] == "second"
