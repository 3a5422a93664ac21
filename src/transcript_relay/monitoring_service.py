"""
TranscriptMonitor - Background service relaying an agent's transcript to a human.

One asyncio task drives a fixed-rate tick. Each tick runs ``check_and_process``:
housekeeping, session resolution, file-set reconciliation, then per-file
incremental reading, classification, dedup and delivery. A tick that fires
while the previous cycle is still running is dropped, never queued.
"""

import asyncio
import gc
import logging
import os
import time
from collections.abc import Awaitable, Callable
from typing import Any

import psutil

from .classifier import PlanConfirmationDetector, RecordClassifier
from .config import RelayConfig
from .dedup import BoundedTTLCache, DedupGuard
from .delivery import DeliveryPipeline
from .file_tracker import FileSetTracker
from .logging_manager import log_delivery
from .messenger import Messenger
from .models import DeliveryOutcome, Interaction, Verdict
from .monitoring.checkpoint_store import CheckpointStore
from .monitoring.log_reader import IncrementalLogReader
from .monitoring.models import WatchedFile, parse_record
from .session_resolver import SessionResolver, project_dir_for
from .terminal import TerminalSource

logger = logging.getLogger(__name__)

InteractionCallback = Callable[[Interaction], Awaitable[Any]]


class TranscriptMonitor:
    """
    Polls the current session's transcripts and forwards what a human should see.

    Collaborators are built from the configuration; the clock and the sleep
    used for chunk pacing are injectable for tests.
    """

    def __init__(
        self,
        config: RelayConfig,
        messenger: Messenger,
        terminal: TerminalSource | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
        audit_logger: logging.Logger | None = None,
    ):
        """
        Initialize the monitor.

        Args:
            config: Relay configuration
            messenger: Outbound channel for deliveries
            terminal: Optional terminal the agent runs in (plan prompts, working directory)
            clock: Returns the current time in epoch seconds
            sleep: Awaitable pause used between chunks of one message
            logger: Logger to use instead of the module logger
            audit_logger: Logger receiving one event per delivery
        """
        self.config = config
        self.messenger = messenger
        self.terminal = terminal
        self.project_path = config.project_path
        self._clock = clock
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._audit_logger = audit_logger

        self.store = CheckpointStore(
            state_file=config.state_file,
            uuid_ttl_seconds=config.uuid_ttl_seconds,
            max_uuids=config.store_max_uuids,
            flush_interval_seconds=config.flush_interval_seconds,
            clock=clock,
            logger=self._logger.getChild("checkpoint"),
        )
        self.reader = IncrementalLogReader(
            chunk_size=config.read_chunk_size,
            logger=self._logger.getChild("reader"),
        )
        self.classifier = RecordClassifier(logger=self._logger.getChild("classifier"))
        self.plan_detector = PlanConfirmationDetector(
            cooldown_seconds=config.plan_cooldown_seconds,
            max_plan_length=config.plan_max_length,
            clock=clock,
            logger=self._logger.getChild("plan"),
        )
        self.dedup = DedupGuard(
            self.store,
            cache=BoundedTTLCache(
                max_entries=config.cache_max_entries,
                ttl_seconds=config.uuid_ttl_seconds,
                clock=clock,
            ),
            logger=self._logger.getChild("dedup"),
        )
        self.file_tracker = FileSetTracker(
            project_dir_for(config.project_path, config.claude_projects_dir),
            self.store,
            subagent_dir=config.subagent_dir,
            logger=self._logger.getChild("files"),
        )
        self.resolver = SessionResolver(
            self.file_tracker,
            self.store,
            session_file_pattern=config.session_file_pattern,
            logger=self._logger.getChild("session"),
        )
        self.pipeline = DeliveryPipeline(
            messenger,
            split_threshold=config.split_threshold,
            max_chunk_size=config.max_chunk_size,
            chunk_delay_seconds=config.chunk_delay_seconds,
            sleep=sleep,
            logger=self._logger.getChild("delivery"),
        )

        self._interaction_callback: InteractionCallback | None = None
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._running = False
        self._busy = False

        # Housekeeping timestamps; None means "due on the next cycle"
        self._last_cleanup = clock()
        self._last_memory_check: float | None = None
        self._last_session_check: float | None = None
        self._last_path_check: float | None = None
        self._last_plan_check: float | None = None
        self._last_logged_session: str | None = None

        self.cycles = 0
        self.skipped_cycles = 0
        self.delivered_messages = 0
        self.delivery_failures = 0

    # ============================================================================
    # Lifecycle Methods
    # ============================================================================

    async def start(self) -> None:
        """
        Start the monitoring loop as a background task.

        Raises:
            RuntimeError: If the monitor is already running
        """
        if self._running:
            raise RuntimeError("TranscriptMonitor is already running")

        self._logger.info(
            f"Starting TranscriptMonitor for {self.project_path} "
            f"(log root: {self.file_tracker.project_dir})"
        )
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._monitoring_loop())
        self._logger.info(f"TranscriptMonitor started (poll interval: {self.config.poll_interval_seconds}s)")

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the loop and flush the checkpoint.

        A cycle already in progress is allowed to finish; it is cancelled
        only if it outlives ``timeout``.
        """
        if not self._running:
            self.store.close()
            return

        self._logger.info("Stopping TranscriptMonitor...")
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except TimeoutError:
                self._logger.warning("Monitoring task did not stop within timeout, cancelling")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            except asyncio.CancelledError:
                self._logger.info("Monitoring task cancelled")
            self._task = None

        self.store.close()
        self._logger.info("TranscriptMonitor stopped")

    def is_running(self) -> bool:
        """Check if the monitoring loop is currently running."""
        return self._running and self._task is not None and not self._task.done()

    async def _monitoring_loop(self) -> None:
        """
        Fixed-rate tick loop.

        Ticks are scheduled against the loop clock. When a cycle overruns one
        or more tick slots the missed ticks are counted as skipped and dropped.
        """
        self._logger.info("Monitoring loop started")
        loop = asyncio.get_running_loop()
        interval = self.config.poll_interval_seconds
        next_tick = loop.time()

        while self._running:
            try:
                await self.check_and_process()
            except asyncio.CancelledError:
                self._logger.info("Monitoring loop cancelled")
                raise
            except Exception as e:
                self._logger.critical(f"Critical error in monitoring loop: {e}", exc_info=True)

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // interval) + 1
                self.skipped_cycles += missed
                self._logger.debug(f"Cycle overran, dropping {missed} tick(s)")
                next_tick += missed * interval

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=next_tick - now)
            except TimeoutError:
                pass

        self._logger.info("Monitoring loop exited")

    # ============================================================================
    # Core Monitoring Methods
    # ============================================================================

    async def check_and_process(self) -> bool:
        """
        Run one monitoring cycle.

        Returns:
            False if the cycle was dropped because another one is in flight,
            True otherwise.
        """
        if self._busy:
            self.skipped_cycles += 1
            self._logger.debug("Previous cycle still running, skipping this one")
            return False

        self._busy = True
        try:
            self.cycles += 1
            await self._run_cycle()
        finally:
            self._busy = False
        return True

    async def _run_cycle(self) -> None:
        now = self._clock()
        self._housekeeping(now)

        if self.terminal is not None and self._due(self._last_path_check, now, self.config.project_path_check_interval_seconds):
            self._last_path_check = now
            await self._check_working_directory()

        force_refresh = self.resolver.waiting_for_new_session or self._due(
            self._last_session_check, now, self.config.session_check_interval_seconds
        )
        session_id = self.resolver.resolve(force_refresh=force_refresh)
        if force_refresh:
            self._last_session_check = now
        if session_id != self._last_logged_session:
            self._logger.info(f"[Session {session_id or 'N/A'}] checking transcripts")
            self._last_logged_session = session_id

        if self.resolver.should_skip(session_id):
            return

        if self.terminal is not None and self._due(self._last_plan_check, now, self.config.plan_check_interval_seconds):
            self._last_plan_check = now
            await self._check_plan_mode()

        if not session_id:
            return

        files = self.file_tracker.current_files(session_id)
        self.file_tracker.reconcile(session_id, files)

        for path in files:
            watched = self.file_tracker.get(path)
            if watched is None:
                continue
            try:
                await self.process_file(session_id, watched)
            except Exception as e:
                self._logger.error(f"Failed to process {path}: {e}", exc_info=True)

    @staticmethod
    def _due(last: float | None, now: float, interval: float) -> bool:
        return last is None or now - last >= interval

    def _housekeeping(self, now: float) -> None:
        if now - self._last_cleanup >= self.config.cleanup_interval_seconds:
            self._last_cleanup = now
            self.dedup.cleanup()

        if self._due(self._last_memory_check, now, self.config.memory_check_interval_seconds):
            self._last_memory_check = now
            self.check_memory()

        self.store.flush_if_due()

    def check_memory(self) -> float | None:
        """
        Sample resident memory and drop caches above the threshold.

        Returns:
            Resident set size in MB, or None if it could not be read.
        """
        try:
            rss_mb = psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024
        except psutil.Error as e:
            self._logger.debug(f"Could not read memory usage: {e}")
            return None

        if rss_mb > self.config.memory_threshold_mb:
            self._logger.warning(
                f"Memory usage high: {rss_mb:.0f}MB (threshold {self.config.memory_threshold_mb}MB)"
            )
            cleared = self.dedup.clear_cache()
            collected = gc.collect()
            self._logger.info(f"Cleared {cleared} cached ids, gc collected {collected} objects")
        return rss_mb

    async def process_file(self, session_id: str, watched: WatchedFile) -> int:
        """
        Consume the records appended to one watched file.

        Returns:
            Number of records that produced a delivery.
        """
        result = self.reader.read_new(
            watched.path, watched.position, settled_size=watched.last_size
        )
        if result.file_size == 0 and result.end_offset == watched.position:
            return 0

        if result.lines_read:
            self._logger.info(
                f"{self.file_tracker.display_name(watched.path)}: {result.lines_read} new lines"
                + (f" ({result.decode_errors} undecodable)" if result.decode_errors else "")
            )

        delivered = 0
        for raw in result.records:
            record = parse_record(raw)
            if record is None or not record.is_assistant_message:
                continue
            if self.dedup.seen(record.uuid):
                continue

            classification = self.classifier.classify(record)
            if classification.verdict == Verdict.INTERACTIVE:
                await self._deliver_interaction(classification.interaction)
                delivered += 1
            elif classification.verdict == Verdict.DELIVER_TEXT:
                await self._deliver_text(record.uuid, classification.text)
                delivered += 1
            else:
                self._logger.debug(f"Suppressed {record.uuid}: {classification.reason}")

            # Marked even when the send failed: delivery is at-most-once.
            self.dedup.mark_seen(record.uuid)

        self._advance(session_id, watched, result.end_offset, result.file_size)
        return delivered

    def _advance(self, session_id: str, watched: WatchedFile, position: int, size: int) -> None:
        try:
            mtime_ms = os.stat(watched.path).st_mtime * 1000
        except OSError:
            mtime_ms = 0.0
        stored = self.store.set_file_position(session_id, watched.path, position, size, mtime_ms)
        watched.position = stored.position
        watched.last_size = size

    async def _deliver_text(self, record_id: str, text: str) -> DeliveryOutcome:
        outcome = await self.pipeline.deliver(text)
        self._record_outcome(record_id, "text", outcome)
        return outcome

    async def _deliver_interaction(self, interaction: Interaction) -> DeliveryOutcome:
        self._logger.info(f"Interaction detected: {interaction.kind.value}")
        outcome = await self.pipeline.deliver_interaction(interaction)
        self._record_outcome(interaction.uuid, interaction.kind.value, outcome)

        if outcome.success and self._interaction_callback is not None:
            try:
                await self._interaction_callback(interaction)
            except Exception as e:
                self._logger.error(f"Interaction callback failed: {e}")
        return outcome

    def _record_outcome(self, record_id: str | None, kind: str, outcome: DeliveryOutcome) -> None:
        if outcome.success:
            self.delivered_messages += 1
            self._logger.info(f"Delivered {kind} message ({outcome.total_chunks} chunk(s))")
        else:
            self.delivery_failures += 1
            self._logger.error(
                f"Delivery of {kind} message incomplete: "
                f"{outcome.sent_chunks}/{outcome.total_chunks} chunks sent"
            )
        log_delivery(
            record_id,
            kind,
            outcome.total_chunks,
            outcome.success,
            error="; ".join(outcome.errors) or None,
            audit_logger=self._audit_logger,
        )

    # ============================================================================
    # Terminal Integration
    # ============================================================================

    async def _check_working_directory(self) -> None:
        working_dir = await self.terminal.current_path()
        if working_dir and working_dir != self.project_path:
            self._logger.info(f"Project path changed: {self.project_path} -> {working_dir}")
            self.update_project_path(working_dir)

    async def _check_plan_mode(self) -> None:
        terminal_text = await self.terminal.capture(self.config.plan_capture_lines)
        interaction = await self.plan_detector.check(terminal_text)
        if interaction is not None:
            await self._deliver_interaction(interaction)

    def update_project_path(self, project_path: str) -> None:
        """Follow the agent into another project: new log root, no cached session."""
        self.project_path = project_path
        project_dir = project_dir_for(project_path, self.config.claude_projects_dir)
        self.resolver.set_project_dir(project_dir)
        self._logger.info(f"Now monitoring {project_dir}")

    def set_terminal_source(self, terminal: TerminalSource | None) -> None:
        """Swap the terminal collaborator; its working directory is checked next cycle."""
        self.terminal = terminal
        self._last_path_check = None
        self._last_plan_check = None
        self.plan_detector.reset()

    def set_interaction_callback(self, callback: InteractionCallback | None) -> None:
        self._interaction_callback = callback

    # ============================================================================
    # Control and Status
    # ============================================================================

    def reset(self) -> None:
        """
        Forget the current session and wait for the agent to start a new one.

        Must not be called while a cycle is in flight.
        """
        self.resolver.reset()
        cleared = self.dedup.clear_cache()
        self.plan_detector.reset()
        self._logger.info(f"Monitor reset, {cleared} cached ids cleared")

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_running(),
            "project_path": self.project_path,
            "project_dir": str(self.file_tracker.project_dir),
            "current_session": self.resolver.current_session_id,
            "waiting_for_new_session": self.resolver.waiting_for_new_session,
            "watched_files": {
                path: {"position": w.position, "last_size": w.last_size}
                for path, w in self.file_tracker.watched.items()
            },
            "cache_size": len(self.dedup.cache),
            "stored_ids": self.store.uuid_count,
            "checkpoint_dirty": self.store.dirty,
            "cycles": self.cycles,
            "skipped_cycles": self.skipped_cycles,
            "delivered_messages": self.delivered_messages,
            "delivery_failures": self.delivery_failures,
        }
