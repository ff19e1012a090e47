"""Host loop: polls the engine, hands batches to a sink and commits them."""

import os
import sys
import json
import time
import logging
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from taildir.config import EngineConfig
from taildir.engine import TailEngine
from taildir.models import Record, record_to_dict

logger = logging.getLogger(__name__)


class JsonLinesSink:
    """Writes each record as one JSON object per line."""

    def __init__(self, stream=None, encoding: str = "utf-8"):
        self._stream = stream or sys.stdout
        self._encoding = encoding
        self.delivered = 0

    def deliver(self, records: list[Record]) -> None:
        for record in records:
            self._stream.write(json.dumps(record_to_dict(record, self._encoding)) + "\n")
        self._stream.flush()
        self.delivered += len(records)


class ChangeNotifier(FileSystemEventHandler):
    """Wakes the poll loop early when something changes in a watched directory."""

    def __init__(self, wake: threading.Event):
        super().__init__()
        self._wake = wake

    def on_modified(self, event):
        if not event.is_directory:
            self._wake.set()

    def on_created(self, event):
        if not event.is_directory:
            self._wake.set()

    def on_moved(self, event):
        self._wake.set()


class TailRunner:
    def __init__(self, engine: TailEngine, sink, config: EngineConfig,
                 shutdown_event: threading.Event | None = None, clock=time.monotonic):
        self._engine = engine
        self._sink = sink
        self._config = config
        self._shutdown = shutdown_event or threading.Event()
        self._wake = threading.Event()
        self._clock = clock
        self._last_checkpoint = clock()
        self.total_delivered = 0

    def poll_once(self) -> int:
        """One discover/read/commit pass over every file with new data."""
        self._engine.discover()
        delivered = 0
        for tf in self._engine.pending_files():
            delivered += self._drain(tf)
        self.total_delivered += delivered

        now = self._clock()
        if now - self._last_checkpoint >= self._config.checkpoint_interval:
            self._save_checkpoint()
            self._last_checkpoint = now
        self._engine.close_idle()
        return delivered

    def _drain(self, tf) -> int:
        batch_size = self._config.batch_size
        total = 0
        while not self._shutdown.is_set():
            try:
                records = self._engine.read_batch(batch_size, tf)
            except OSError as e:
                logger.warning("Failed reading %s (inode=%d): %s", tf.path, tf.identity, e)
                break
            if not records:
                break
            try:
                self._sink.deliver(records)
            except Exception:
                logger.exception("Sink rejected %d records from %s, batch will be read again",
                                 len(records), tf.path)
                break
            self._engine.commit()
            total += len(records)
            if len(records) < batch_size:
                break
        return total

    def _save_checkpoint(self) -> None:
        try:
            self._engine.save_checkpoint()
        except OSError as e:
            logger.error("Failed writing checkpoint %s: %s", self._config.checkpoint_file, e)

    def stop(self) -> None:
        self._shutdown.set()
        self._wake.set()

    def run(self) -> None:
        """Poll until stopped; directory events cut the wait between polls short."""
        observer = Observer()
        notifier = ChangeNotifier(self._wake)
        for directory in sorted(self._engine.parent_dirs()):
            if os.path.isdir(directory):
                observer.schedule(notifier, directory, recursive=True)
                logger.info("Watching directory: %s", directory)
        observer.start()

        try:
            while not self._shutdown.is_set():
                n = self.poll_once()
                if n:
                    logger.debug("Delivered %d records", n)
                self._wake.wait(self._config.poll_interval)
                self._wake.clear()
        finally:
            observer.stop()
            observer.join(timeout=5)
            self._save_checkpoint()
            self._engine.close()
            logger.info("Tail runner stopped, %d records delivered", self.total_delivered)
