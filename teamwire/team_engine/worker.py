"""In-process thread hosting an embedded member."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TeammateWorker(threading.Thread):
    """Calls ``poll_fn`` until stopped or until ``should_exit`` turns true.

    A poll that raises is logged and counted; the member keeps running. The
    thread only sleeps after a poll that found nothing to do.
    """

    def __init__(
        self,
        team_name: str,
        member_id: str,
        poll_fn: Callable[[], bool],
        should_exit: Optional[Callable[[], bool]] = None,
        poll_interval_s: float = 0.2,
    ):
        super().__init__(name=f"teamwire-member[{team_name}/{member_id}]", daemon=True)
        self.team_name = team_name
        self.member_id = member_id
        self._poll_fn = poll_fn
        self._should_exit = should_exit or (lambda: False)
        self.poll_interval_s = max(0.01, float(poll_interval_s))
        self._halt = threading.Event()
        self.polls = 0
        self.failures = 0
        self.last_error: Optional[str] = None
        self.last_processed_at: Optional[float] = None

    def stop(self) -> None:
        self._halt.set()

    def wait_stopped(self, timeout: float = 2.0) -> bool:
        self.join(timeout=timeout)
        return not self.is_alive()

    def run(self) -> None:
        logger.debug("Member thread %s/%s started", self.team_name, self.member_id)
        while not self._halt.is_set():
            processed = False
            try:
                processed = bool(self._poll_fn())
            except Exception as exc:  # one bad message must not kill the member
                self.failures += 1
                self.last_error = str(exc)
                logger.exception("Member %s/%s poll failed", self.team_name, self.member_id)
            self.polls += 1
            if processed:
                self.last_processed_at = time.time()

            if self._should_exit():
                break
            if not processed:
                self._halt.wait(self.poll_interval_s)
        logger.debug(
            "Member thread %s/%s stopped after %d polls (%d failed)",
            self.team_name,
            self.member_id,
            self.polls,
            self.failures,
        )
