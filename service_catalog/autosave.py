# service_catalog/autosave.py
"""
Debounced autosave with bounded exponential-backoff retry.

    coordinator = AutosaveCoordinator(repository.save)
    store.channel.subscribe("changed", lambda _: coordinator.observe(store.to_wire()))

State is derived from content hashes, not from explicit transitions:

    idle   -> dirty   an observed document hashes differently from the last save
    dirty  -> saving  the debounce window expired and the content still differs
    saving -> idle    save succeeded
    saving -> error   save failed (a background save retries, a manual one raises)

Timers go through a scheduler with call_later(delay_ms, callback); the default
one uses the running asyncio loop. Every save attempt takes a generation
number; an attempt whose generation is no longer current when it finishes is
ignored and leaves the state alone.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Set

from service_catalog.config import AUTOSAVE_DEBOUNCE_MS, AUTOSAVE_MAX_RETRIES, AUTOSAVE_RETRY_DELAY_MS
from service_catalog.event_channel import EventChannel
from service_catalog.models import AutosaveDocument, AutosaveState

logger = logging.getLogger("catalog_editor")

SaveCallback = Callable[[AutosaveDocument], Awaitable[Any]]
# returns None when the save may proceed, otherwise the reason it is blocked
SaveGuard = Callable[[AutosaveDocument], Optional[str]]


class LoopScheduler:
    """call_later in milliseconds on the running asyncio loop."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay_ms / 1000.0, callback)


class AutosaveCoordinator:
    def __init__(
        self,
        save_callback: SaveCallback,
        *,
        debounce_ms: float = AUTOSAVE_DEBOUNCE_MS,
        max_retries: int = AUTOSAVE_MAX_RETRIES,
        retry_delay_ms: float = AUTOSAVE_RETRY_DELAY_MS,
        scheduler=None,
        save_guard: Optional[SaveGuard] = None,
    ):
        self.save_callback = save_callback
        self.debounce_ms = debounce_ms
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.scheduler = scheduler or LoopScheduler()
        self.save_guard = save_guard

        self.channel = EventChannel("autosave")
        self.state = AutosaveState()

        self._document: Optional[AutosaveDocument] = None
        self._last_saved_hash: Optional[str] = None
        self._initialized = False
        self._debounce_timer = None
        self._retry_timer = None
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    # ---- state ----

    def _set_state(self, **changes) -> None:
        self.state = self.state.model_copy(update=changes)
        self.channel.publish("state.changed", self.state)

    @property
    def has_unsaved_changes(self) -> bool:
        if self._document is None:
            return False
        return self._document.content_hash() != self._last_saved_hash

    # ---- timers ----

    def _cancel_debounce(self) -> None:
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def cancel_timers(self) -> None:
        self._cancel_debounce()
        self._cancel_retry()

    def _schedule_debounce(self) -> None:
        self._cancel_debounce()
        self._debounce_timer = self.scheduler.call_later(self.debounce_ms, self._on_debounce)
        logger.debug("autosave: debounce scheduled in %sms", self.debounce_ms)

    def _spawn(self, retry_count: int) -> None:
        task = asyncio.get_running_loop().create_task(self._attempt(retry_count, manual=False))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ---- change detection ----

    def observe(self, document: AutosaveDocument) -> None:
        """Feed the latest document. The first call only records the baseline."""
        content_hash = document.content_hash()
        self._document = document

        if not self._initialized:
            self._initialized = True
            self._last_saved_hash = content_hash
            logger.debug("autosave: baseline recorded")
            return

        if content_hash == self._last_saved_hash:
            return

        # a fresh edit supersedes any retry of an older one
        self._cancel_retry()
        if self.state.status != "saving":
            self._set_state(status="dirty", is_dirty=True)
        else:
            self._set_state(is_dirty=True)
        self._schedule_debounce()

    def _on_debounce(self) -> None:
        self._debounce_timer = None
        if not self.has_unsaved_changes:
            self._set_state(status="idle", is_dirty=False)
            return
        self._spawn(retry_count=0)

    def _on_retry(self, retry_count: int) -> None:
        self._retry_timer = None
        self._spawn(retry_count=retry_count)

    # ---- saving ----

    async def _attempt(self, retry_count: int, manual: bool) -> None:
        document = self._document

        # a blocked save must not make the one already in flight stale
        if self.save_guard is not None:
            reason = self.save_guard(document)
            if reason:
                logger.info("autosave: save blocked (%s)", reason)
                if self.state.is_saving:
                    self._set_state(is_dirty=True)
                else:
                    self._set_state(status="dirty", is_dirty=True)
                self.channel.publish("save.blocked", reason)
                return

        self._generation += 1
        generation = self._generation
        content_hash = document.content_hash()
        self._set_state(status="saving", is_saving=True)
        self.channel.publish("save.started", {"generation": generation, "manual": manual})
        logger.info("autosave: saving (generation=%d, manual=%s, retry=%d)", generation, manual, retry_count)

        try:
            await self.save_callback(document)
        except Exception as e:
            if generation != self._generation:
                logger.info("autosave: stale save %d failed, ignored", generation)
                if manual:
                    raise
                return
            self._on_failure(e, retry_count, manual, generation)
            if manual:
                raise
            return

        if generation != self._generation:
            logger.info("autosave: stale save %d finished, ignored", generation)
            return
        self._on_success(content_hash, generation)

    def _on_success(self, content_hash: str, generation: int) -> None:
        self._last_saved_hash = content_hash
        still_dirty = self.has_unsaved_changes
        self._set_state(
            status="dirty" if still_dirty else "idle",
            is_saving=False,
            is_dirty=still_dirty,
            last_saved=datetime.now(timezone.utc),
            errors=[],
            retry_count=0,
        )
        logger.info("autosave: saved (generation=%d)", generation)
        self.channel.publish("save.succeeded", {"generation": generation, "hash": content_hash})
        # edits that arrived while saving and whose debounce already fired
        if still_dirty and self._debounce_timer is None:
            self._schedule_debounce()

    def _on_failure(self, error: Exception, retry_count: int, manual: bool, generation: int) -> None:
        message = str(error) or error.__class__.__name__
        logger.warning("autosave: save failed: %s", message)
        self._set_state(status="error", is_saving=False, errors=[message])
        self.channel.publish("save.failed", {"error": message, "manual": manual, "retryCount": retry_count, "generation": generation})
        if manual:
            return

        next_count = retry_count + 1
        if next_count > self.max_retries:
            logger.error("autosave: giving up after %d retries", retry_count)
            return
        delay = self.retry_delay_ms * (2 ** (next_count - 1))
        self._set_state(retry_count=next_count)
        self._cancel_retry()
        self._retry_timer = self.scheduler.call_later(delay, lambda: self._on_retry(next_count))
        logger.info("autosave: retry %d/%d in %sms", next_count, self.max_retries, delay)
        self.channel.publish("save.retry_scheduled", {"retryCount": next_count, "delayMs": delay})

    async def save_now(self) -> bool:
        """
        Save immediately, whether or not the content changed. Never retried:
        a failure is raised to the caller. Returns False when nothing has been
        observed yet.
        """
        self.cancel_timers()
        if self._document is None:
            logger.info("autosave: save_now before any document was observed, skipped")
            return False
        await self._attempt(retry_count=0, manual=True)
        return True

    async def wait_for_pending_save(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ---- explicit controls ----

    def clear_errors(self) -> None:
        self._set_state(errors=[], status="dirty" if self.state.is_dirty else "idle")

    def mark_clean(self, document: Optional[AutosaveDocument] = None) -> None:
        """The current (or given) document is known to match what the server holds."""
        self.cancel_timers()
        if document is not None:
            self._document = document
        if self._document is not None:
            self._last_saved_hash = self._document.content_hash()
            self._initialized = True
        self._set_state(status="idle", is_dirty=False, retry_count=0)

    def mark_dirty(self) -> None:
        self._last_saved_hash = None
        self._initialized = True
        self._set_state(status="dirty", is_dirty=True)
        if self._document is not None:
            self._schedule_debounce()

    def dispose(self) -> None:
        self.cancel_timers()
        # invalidate whatever is still in flight
        self._generation += 1
