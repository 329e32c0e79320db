"""Agent memory: a per-(user, mode) conversation log bounded by a token budget.

When the log grows past ``max_tokens`` the oldest entries are folded into
a rolling summary (or dropped when no summarization model is available)
until summary plus remaining entries fit again.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from supermd.ai.providers.base import LLMMessage
from supermd.ai.providers.factory import get_llm_provider
from supermd.config import get_settings
from supermd.exceptions import StoreUnavailableError, SummarizerError
from supermd.infrastructure.logging import request_context
from supermd.memory.store import InMemoryMemoryStore, MemoryStore
from supermd.memory.summarizer import MemorySummarizer, build_summarizer
from supermd.memory.tokens import TokenEstimator, estimate_tokens, truncate_to_tokens
from supermd.memory.types import (
    ConversationContext,
    MemoryEntry,
    MemoryEntryInput,
    MemorySummary,
    MemoryWindow,
    TrimResult,
)

logger = logging.getLogger("memory")

SOURCES_PREFIX = "SOURCES:"


def select_fold_batch(
    entries: Sequence[MemoryEntry],
    overflow: int,
    min_batch: int,
) -> list[MemoryEntry]:
    """Oldest entries to fold: enough to cover ``overflow`` and at least ``min_batch``.

    Returns fewer than ``min_batch`` only when the log is shorter.
    """
    batch: list[MemoryEntry] = []
    collected = 0
    for entry in entries:
        batch.append(entry)
        collected += entry.tokens
        if collected >= overflow and len(batch) >= min_batch:
            break
    return batch


class AgentMemoryService:
    """Append, load and trim memory logs."""

    def __init__(
        self,
        store: MemoryStore,
        summarizer: MemorySummarizer | None = None,
        max_tokens: int = 1600,
        summary_max_tokens: int = 1200,
        min_batch_messages: int = 4,
        max_trim_passes: int = 32,
        estimator: TokenEstimator = estimate_tokens,
    ):
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self.store = store
        self.summarizer = summarizer
        self.max_tokens = max_tokens
        # A summary larger than the whole budget could never fit
        self.summary_max_tokens = min(summary_max_tokens, max_tokens)
        self.min_batch_messages = max(1, min_batch_messages)
        self.max_trim_passes = max_trim_passes
        self.estimate_tokens = estimator
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        # trims holding or waiting for each lock
        self._lock_users: collections.Counter[tuple[str, str]] = collections.Counter()

    async def aclose(self) -> None:
        """Release the summarization model client."""
        if self.summarizer is not None:
            await self.summarizer.aclose()

    @asynccontextmanager
    async def _log_lock(self, user_id: str, mode: str) -> AsyncIterator[None]:
        """Hold the lock of one log; it is forgotten once nobody holds or awaits it."""
        key = (user_id, mode)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def load(self, user_id: str, mode: str) -> MemoryWindow:
        """Current summary and entries; empty when the store is unreachable."""
        try:
            return await self.store.load(user_id, mode)
        except StoreUnavailableError as exc:
            logger.warning(
                "Memory store unavailable, serving empty memory",
                extra={
                    "service": "memory",
                    "user_id": user_id,
                    "mode": mode,
                    "error_code": exc.code,
                    "error": str(exc.__cause__ or exc),
                },
            )
            return MemoryWindow()

    async def get_context(self, user_id: str, mode: str) -> MemoryWindow:
        return await self.load(user_id, mode)

    async def append(
        self,
        user_id: str,
        mode: str,
        entries: Sequence[MemoryEntryInput],
        trim: bool = True,
    ) -> list[MemoryEntry]:
        """Durably add entries, then bring the log back under budget.

        Entries without content are skipped. On a store outage nothing is
        written and an empty list is returned.
        """
        to_insert = [entry for entry in entries if entry.content and entry.content.strip()]
        if not to_insert:
            return []

        tokens = [self.estimate_tokens(entry.content) for entry in to_insert]
        try:
            created = await self.store.append(user_id, mode, to_insert, tokens)
        except StoreUnavailableError as exc:
            logger.warning(
                "Memory store unavailable, entries not recorded",
                extra={
                    "service": "memory",
                    "user_id": user_id,
                    "mode": mode,
                    "batch_size": len(to_insert),
                    "error_code": exc.code,
                },
            )
            return []

        logger.debug(
            "Memory entries appended",
            extra={
                "service": "memory",
                "user_id": user_id,
                "mode": mode,
                "batch_size": len(created),
                "total_tokens": sum(tokens),
            },
        )

        if trim:
            await self.trim(user_id, mode)
        return created

    async def trim(self, user_id: str, mode: str) -> TrimResult:
        """Fold oldest entries until summary plus entries fit ``max_tokens``.

        Runs at most ``max_trim_passes`` passes. Each pass removes at least
        one entry or the oversize summary, so the loop always makes progress.
        Trims of one log are serialized.
        """
        with request_context(user_id=user_id):
            async with self._log_lock(user_id, mode):
                return await self._trim_locked(user_id, mode)

    async def _trim_locked(self, user_id: str, mode: str) -> TrimResult:
        result = TrimResult()
        start_time = time.time()
        log_extra: dict[str, Any] = {"service": "memory", "user_id": user_id, "mode": mode}

        for pass_number in range(1, self.max_trim_passes + 1):
            try:
                window = await self.store.load(user_id, mode)
            except StoreUnavailableError as exc:
                logger.warning(
                    "Memory store unavailable, skipping trim",
                    extra={**log_extra, "error_code": exc.code},
                )
                return result

            total = window.total_tokens
            if pass_number == 1:
                result.tokens_before = total
            result.tokens_after = total
            if total <= self.max_tokens:
                if result.passes:
                    logger.info(
                        "Memory trimmed",
                        extra={
                            **log_extra,
                            "total_tokens": total,
                            "max_tokens": self.max_tokens,
                            "batch_size": result.folded_entries,
                            "duration_ms": int((time.time() - start_time) * 1000),
                            "metadata": {
                                "passes": result.passes,
                                "tokens_before": result.tokens_before,
                                "summarized": result.summarized,
                            },
                        },
                    )
                return result

            overflow = total - self.max_tokens
            batch = select_fold_batch(window.entries, overflow, self.min_batch_messages)

            try:
                if not batch:
                    # Only the summary is left and it alone is over budget
                    await self.store.fold(user_id, mode, [], None, clear_summary=True)
                    result.summary_dropped = True
                    logger.warning(
                        "Dropped oversize memory summary",
                        extra={**log_extra, "total_tokens": total, "max_tokens": self.max_tokens},
                    )
                else:
                    new_summary = await self._summarize(user_id, mode, window.summary, batch)
                    await self.store.fold(
                        user_id, mode, [entry.id for entry in batch], new_summary
                    )
                    result.folded_entries += len(batch)
                    result.summarized = result.summarized or new_summary is not None
            except StoreUnavailableError as exc:
                logger.warning(
                    "Memory store unavailable during fold, trim aborted",
                    extra={**log_extra, "error_code": exc.code},
                )
                return result
            result.passes += 1

        logger.error(
            "Memory trim stopped at pass limit while over budget",
            extra={
                **log_extra,
                "total_tokens": result.tokens_after,
                "max_tokens": self.max_tokens,
                "metadata": {"passes": result.passes},
            },
        )
        return result

    async def _summarize(
        self,
        user_id: str,
        mode: str,
        previous: MemorySummary | None,
        batch: Sequence[MemoryEntry],
    ) -> MemorySummary | None:
        """New summary for the fold, or ``None`` to keep the current one.

        ``None`` means the batch is dropped without being summarized.
        """
        if self.summarizer is None:
            return None

        previous_text = previous.content if previous else ""
        try:
            text = await self.summarizer.summarize(previous_text, batch)
        except SummarizerError as exc:
            logger.warning(
                "Summarization failed, dropping folded entries",
                extra={
                    "service": "memory",
                    "user_id": user_id,
                    "mode": mode,
                    "batch_size": len(batch),
                    "error_code": exc.code,
                    "error": exc.message,
                },
            )
            return None

        text = text.strip()
        if not text or text == previous_text:
            return None

        text = truncate_to_tokens(text, self.summary_max_tokens, self.estimate_tokens)
        return MemorySummary(content=text, tokens=self.estimate_tokens(text))


def memory_to_messages(
    window: MemoryWindow,
    summary_label: str = "Conversation summary",
) -> list[LLMMessage]:
    """Provider messages for a window: summary first, then entries by role."""
    messages: list[LLMMessage] = []
    if window.summary is not None:
        messages.append(
            LLMMessage(
                role="system",
                content=f"{summary_label}:\n{window.summary.content}".strip(),
            )
        )
    for entry in window.entries:
        if entry.role == "human":
            messages.append(LLMMessage(role="user", content=entry.content))
        elif entry.role == "assistant":
            messages.append(LLMMessage(role="assistant", content=entry.content))
        else:
            messages.append(LLMMessage(role="system", content=entry.content))
    return messages


def collect_conversation_context(window: MemoryWindow) -> ConversationContext:
    """Most recent query, answer and cited sources, scanning newest first."""
    last_query: str | None = None
    last_answer: str | None = None
    last_sources: list[str] | None = None

    for entry in reversed(window.entries):
        metadata = entry.metadata or {}

        if last_answer is None and entry.role == "assistant":
            last_answer = entry.content
            sources = metadata.get("sources")
            if isinstance(sources, list) and last_sources is None:
                last_sources = [str(source) for source in sources]
            continue

        if last_query is None and entry.role == "human":
            last_query = entry.content
            continue

        if last_sources is None and entry.role == "system":
            if metadata.get("type") == "sources" and isinstance(metadata.get("sources"), list):
                last_sources = [str(source) for source in metadata["sources"]]
            elif entry.content.startswith(SOURCES_PREFIX):
                last_sources = [
                    item.strip()
                    for item in entry.content[len(SOURCES_PREFIX) :].split(",")
                    if item.strip()
                ]

        if last_query and last_answer and last_sources:
            break

    return ConversationContext(
        last_query=last_query,
        last_answer=last_answer,
        last_sources=last_sources,
    )


_service: AgentMemoryService | None = None


def get_memory_service() -> AgentMemoryService:
    """Get the global memory service, built from settings on first use."""
    global _service
    if _service is None:
        settings = get_settings()
        if settings.memory_store_backend == "memory":
            store: MemoryStore = InMemoryMemoryStore()
        else:
            from supermd.infrastructure.database import get_session_factory
            from supermd.memory.store import SqlMemoryStore

            store = SqlMemoryStore(get_session_factory())
        _service = AgentMemoryService(
            store=store,
            summarizer=build_summarizer(settings),
            max_tokens=settings.agent_memory_max_tokens,
            summary_max_tokens=settings.agent_memory_target_tokens,
            min_batch_messages=settings.agent_memory_min_batch_messages,
            max_trim_passes=settings.agent_memory_max_trim_passes,
        )
    return _service


def set_memory_service(service: AgentMemoryService | None) -> None:
    """Replace the global memory service (``None`` rebuilds it from settings)."""
    global _service
    _service = service


async def close_memory_service() -> None:
    """Close the global service at shutdown; the next use rebuilds it."""
    global _service
    if _service is not None:
        await _service.aclose()
    _service = None
    get_llm_provider.cache_clear()
