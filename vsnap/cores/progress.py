################################################################################
# VSNAP
#
# @file:        progress.py
# @module:      vsnap.cores.progress
# @description: Non-blocking progress reporting with pluggable sinks.
# @author:      Vladimir Fomin & Contributors
# @repository:  https://github.com/fominv/vsnap
# @version:     0.6.0
#
# ------------------------------------------------------------------------------
# Copyright (c) 2025 Vladimir Fomin
# MIT License: see LICENSE or https://opensource.org/licenses/MIT
# ==============================================================================
# Notes:
# - publish() never blocks; a full queue drops its oldest event
# - Sink errors are logged on the render thread and never reach the engine
################################################################################

"""
Progress reporting for long running helper operations.

The engine publishes ``ProgressEvent`` objects; a daemon thread hands them
to a sink (rich progress bar or log lines). Events are cumulative, so losing
intermediate ones under backpressure only makes the display coarser.
"""

import queue
import threading
from typing import Dict, Iterable, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from ..constants import PROGRESS_QUEUE_SIZE
from ..helpers.logging import get_logger
from ..helpers.system_utils import SystemUtils
from ..types import ProgressEvent

logger = get_logger(__name__)

_STOP = object()


class ProgressSink:
    """Presentation target for progress events."""

    def on_event(self, event: ProgressEvent):
        raise NotImplementedError

    def close(self):
        pass


class LoggingProgressSink(ProgressSink):
    """Writes progress as debug log lines."""

    def on_event(self, event: ProgressEvent):
        logger.debug(
            f"{event.operation or 'progress'}: "
            f"{SystemUtils.format_bytes(event.progress)} / {SystemUtils.format_bytes(event.total)} "
            f"({event.fraction * 100:.1f}%)",
            extra={"operation": event.operation},
        )


class RichProgressSink(ProgressSink):
    """Rich progress bar with bytes, transfer speed and ETA."""

    def __init__(self, console: Optional[Console] = None, transient: bool = False):
        self.progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=transient,
        )
        self._tasks: Dict[str, TaskID] = {}
        self._started = False

    def on_event(self, event: ProgressEvent):
        if not self._started:
            self.progress.start()
            self._started = True
        key = event.operation or "progress"
        if key not in self._tasks:
            self._tasks[key] = self.progress.add_task(key.capitalize(), total=event.total)
        self.progress.update(self._tasks[key], completed=event.progress, total=event.total)

    def close(self):
        if self._started:
            self.progress.stop()
            self._started = False


class ProgressReporter:
    """
    Bounded, drop-oldest event queue drained by a rendering thread.

    Usage:
        with ProgressReporter(RichProgressSink()) as reporter:
            producer = SnapshotProducer(client, config, reporter=reporter)
            producer.create("pgdata", "pgdata-snap")
    """

    def __init__(self, sink: Optional[ProgressSink] = None, maxsize: int = PROGRESS_QUEUE_SIZE):
        self.sink = sink or LoggingProgressSink()
        self._queue: "queue.Queue" = queue.Queue(maxsize=max(1, maxsize))
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._closed = False
        self.dropped = 0

    def start(self) -> "ProgressReporter":
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="vsnap-progress", daemon=True)
            self._thread.start()
        return self

    def publish(self, event: ProgressEvent):
        """Enqueue an event without blocking."""
        with self._lock:
            if self._closed:
                return
            while True:
                try:
                    self._queue.put_nowait(event)
                    return
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                    except queue.Empty:
                        pass

    def observe(self, events: Iterable[ProgressEvent]):
        for event in events:
            self.publish(event)

    def close(self, timeout: float = 5.0):
        """Drain pending events, stop the thread and close the sink."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._thread is not None:
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.warning("Progress renderer did not drain its queue; abandoning it")
            else:
                self._thread.join(timeout)
            self._thread = None
        try:
            self.sink.close()
        except Exception as e:
            logger.warning(f"Progress sink failed to close: {e}")
        if self.dropped:
            logger.debug(f"Dropped {self.dropped} progress events under backpressure")

    def __enter__(self) -> "ProgressReporter":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _run(self):
        while True:
            event = self._queue.get()
            if event is _STOP:
                return
            try:
                self.sink.on_event(event)
            except Exception as e:
                logger.warning(f"Progress sink error: {e}")
