"""
Snapshot persistence for the metric store.

Snapshot file layout:
    one JSON object per line, {"id": ..., "type": ..., "delta"|"value": ...}
    each line holds the current value (counters: accumulated total)

Two durability modes:
- FileStore: write-through, every mutation rewrites the whole snapshot
- MemoryStore + Autosaver: snapshot rewritten on a timer and once more on stop

Cold-start failures raise SnapshotError and must stop the process.
Rewrite failures on a running store are logged; memory stays authoritative.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import IO, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from metric_ledger.models import Metric
from metric_ledger.store import MemoryStore, StoreError

logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    """Raised when the snapshot file cannot be opened or hydrated."""
    pass


def _ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def parse_snapshot(lines: Iterable[str]) -> List[Metric]:
    """
    Parse snapshot lines into metrics.

    Blank lines are skipped. Any malformed line aborts the whole parse.

    Raises:
        SnapshotError: On invalid JSON, unknown type or missing value
    """
    metrics = []
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            metrics.append(Metric.model_validate_json(line))
        except ValidationError as e:
            raise SnapshotError(f"snapshot line {lineno} is invalid: {e}") from e
    return metrics


def replay(store: MemoryStore, metrics: Iterable[Metric]) -> None:
    """Load persisted totals into `store` without re-accumulating counters."""
    try:
        store.restore(metrics)
    except StoreError as e:
        raise SnapshotError(f"snapshot is inconsistent: {e}") from e


def _write_lines(fh: IO[str], metrics: Iterable[Metric]) -> None:
    for metric in metrics:
        fh.write(metric.to_json())
        fh.write("\n")
    fh.flush()
    os.fsync(fh.fileno())


def rewrite_in_place(fh: IO[str], metrics: Iterable[Metric]) -> None:
    """Truncate an open snapshot file and write every metric, one per line."""
    fh.seek(0)
    fh.truncate(0)
    _write_lines(fh, metrics)


def replace_atomically(path: str, metrics: Iterable[Metric]) -> None:
    """Write the snapshot to a temp file next to `path` and rename it over."""
    _ensure_parent(path)
    fd, tmp_path = tempfile.mkstemp(
        prefix=".snapshot-", dir=os.path.dirname(path) or "."
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            _write_lines(fh, metrics)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def write_snapshot(path: str, metrics: Iterable[Metric], atomic: bool = False) -> None:
    """Rewrite the snapshot at `path` from scratch."""
    if atomic:
        replace_atomically(path, metrics)
        return
    _ensure_parent(path)
    with open(path, "w", encoding="utf-8") as fh:
        _write_lines(fh, metrics)


def _open_snapshot(path: str, restore: bool) -> Tuple[IO[str], List[Metric]]:
    """
    Open (or create) the snapshot and return the handle plus parsed content.

    restore=False discards whatever the file held.
    """
    try:
        _ensure_parent(path)
        fh = open(path, "a+", encoding="utf-8")
    except OSError as e:
        raise SnapshotError(f"cannot open snapshot {path}: {e}") from e

    try:
        if not restore:
            fh.seek(0)
            fh.truncate(0)
            return fh, []
        size = os.fstat(fh.fileno()).st_size
        if size == 0:
            return fh, []
        fh.seek(0)
        return fh, parse_snapshot(fh)
    except OSError as e:
        fh.close()
        raise SnapshotError(f"cannot read snapshot {path}: {e}") from e
    except UnicodeDecodeError as e:
        fh.close()
        raise SnapshotError(f"snapshot {path} is not valid UTF-8: {e}") from e
    except SnapshotError:
        fh.close()
        raise


def load_snapshot(path: str, store: MemoryStore, restore: bool = True) -> int:
    """
    Hydrate `store` from the snapshot at `path` (autosave variant).

    Returns:
        Number of metrics replayed
    """
    fh, metrics = _open_snapshot(path, restore)
    fh.close()
    replay(store, metrics)
    return len(metrics)


class FileStore(MemoryStore):
    """
    MemoryStore with write-through snapshot persistence.

    Each upsert is applied in memory and then the full snapshot is
    rewritten while the store lock is still held, so the file always
    reflects some complete state of the map.

    Usage:
        store = FileStore("/tmp/metrics-db.json", restore=True)
        store.upsert_counter("PollCount", 3)
        store.close()
    """

    def __init__(
        self,
        path: str,
        restore: bool = True,
        atomic: bool = False,
        log: Optional[logging.Logger] = None,
    ):
        super().__init__(log=log)
        self.path = path
        self.atomic = atomic
        self._closed = False
        self._fh, metrics = _open_snapshot(path, restore)
        try:
            replay(self, metrics)
        except SnapshotError:
            self._fh.close()
            raise
        self.log.info(f"FileStore opened: {path} ({len(metrics)} metrics restored)")

    def _persist_locked(self) -> None:
        if self._closed:
            self.log.warning(f"Snapshot {self.path} is closed, write kept in memory only")
            return
        metrics = [self._metrics[k] for k in sorted(self._metrics)]
        try:
            if self.atomic:
                replace_atomically(self.path, metrics)
                # the old handle points at the replaced inode
                self._fh.close()
                self._fh = open(self.path, "a+", encoding="utf-8")
            else:
                rewrite_in_place(self._fh, metrics)
        except OSError as e:
            self.log.error(f"Snapshot rewrite failed for {self.path}: {e}")

    def upsert_gauge(self, name: str, value: float) -> Metric:
        with self._lock:
            metric = self._upsert_gauge(name, value)
            self._persist_locked()
        return metric

    def upsert_counter(self, name: str, delta: int, accumulate: bool = True) -> Metric:
        with self._lock:
            metric = self._upsert_counter(name, delta, accumulate)
            self._persist_locked()
        return metric

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._fh.close()
            except OSError as e:
                self.log.error(f"Closing snapshot {self.path} failed: {e}")


class Autosaver:
    """
    Background thread that rewrites the snapshot every `interval` seconds.

    stop() cancels the timer and performs one last synchronous save, which
    is the shutdown flush.
    """

    def __init__(
        self,
        store: MemoryStore,
        path: str,
        interval: float,
        atomic: bool = False,
        log: Optional[logging.Logger] = None,
    ):
        if interval <= 0:
            raise ValueError("autosave interval must be positive")
        self.store = store
        self.path = path
        self.interval = interval
        self.atomic = atomic
        self.log = log or logger
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def save(self) -> bool:
        """Write the current store content; returns False if the write failed."""
        metrics = self.store.get_all()
        try:
            write_snapshot(self.path, metrics, atomic=self.atomic)
        except OSError as e:
            self.log.error(f"Autosave to {self.path} failed: {e}")
            return False
        self.log.debug(f"Autosaved {len(metrics)} metrics to {self.path}")
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.save()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="autosave", daemon=True)
        self._thread.start()
        self.log.info(f"Autosave every {self.interval}s to {self.path}")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self.save()


def open_store(settings, log: Optional[logging.Logger] = None) -> Tuple[MemoryStore, Optional[Autosaver]]:
    """
    Build the store described by collector settings.

    - no FILE_STORAGE_PATH: memory only
    - STORE_INTERVAL == 0: FileStore (write-through)
    - STORE_INTERVAL > 0: MemoryStore restored from disk + Autosaver

    The autosaver is returned unstarted.

    Raises:
        SnapshotError: If the snapshot cannot be opened or restored
    """
    log = log or logger
    path = settings.FILE_STORAGE_PATH
    if not path:
        log.info("Persistence disabled (no FILE_STORAGE_PATH)")
        return MemoryStore(log=log), None

    if settings.STORE_INTERVAL == 0:
        store = FileStore(
            path, restore=settings.RESTORE, atomic=settings.ATOMIC_SNAPSHOT, log=log
        )
        return store, None

    store = MemoryStore(log=log)
    restored = load_snapshot(path, store, restore=settings.RESTORE)
    log.info(f"Restored {restored} metrics from {path}")
    saver = Autosaver(
        store, path, settings.STORE_INTERVAL, atomic=settings.ATOMIC_SNAPSHOT, log=log
    )
    return store, saver
