"""Directory-based locks shared by the file stores.

``mkdir`` is atomic on every platform we care about, so a lock directory
serializes writers across threads and across processes alike. A lock left
behind by a crashed writer is reclaimed once it is older than ``stale_s``.
"""

from __future__ import annotations

import logging
import shutil
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class DirLock:
    def __init__(
        self,
        timeout_s: float = 3.0,
        stale_s: float = 30.0,
        retry_interval_s: float = 0.01,
    ):
        self.timeout_s = max(0.1, float(timeout_s))
        self.stale_s = max(0.1, float(stale_s))
        self.retry_interval_s = max(0.001, float(retry_interval_s))

    @contextmanager
    def hold(self, lock_dir: Path | str, timeout_s: Optional[float] = None) -> Iterator[None]:
        lock_path = Path(lock_dir)
        timeout = self.timeout_s if timeout_s is None else max(0.01, float(timeout_s))
        deadline = time.monotonic() + timeout

        while True:
            try:
                lock_path.mkdir(parents=True, exist_ok=False)
                break
            except FileExistsError:
                self._try_reclaim_stale_lock(lock_path)
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"lock timeout: {lock_path}")
                time.sleep(self.retry_interval_s)
        try:
            yield
        finally:
            if lock_path.exists():
                shutil.rmtree(lock_path, ignore_errors=True)

    def _try_reclaim_stale_lock(self, lock_path: Path) -> None:
        if not lock_path.exists():
            return
        try:
            age_s = time.time() - lock_path.stat().st_mtime
        except OSError:
            return
        if age_s >= self.stale_s:
            logger.warning("Reclaiming stale lock %s (age %.1fs)", lock_path, age_s)
            shutil.rmtree(lock_path, ignore_errors=True)
