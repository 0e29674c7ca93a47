"""Two-phase graceful termination with an explicit forced path.

A shutdown attempt moves ``requested -> approved | denied | timed_out``.
Only ``approved`` touches the member: its execution context is terminated
and the registry entry deactivated. ``denied`` and ``timed_out`` leave it
active; a caller who still wants it gone escalates to :meth:`force_shutdown`.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
import uuid
from typing import Callable, List, Optional

from .errors import TeamEngineError
from .models import MailboxEntry, ShutdownOutcome
from .protocol import LEADER_MAILBOX, MessageKind, ShutdownState, sanitize_name

logger = logging.getLogger(__name__)

MEMBER_SHUTDOWN_TIMEOUT_S = 30.0
TEAM_SHUTDOWN_TIMEOUT_S = 20.0


class ShutdownCoordinator:
    def __init__(
        self,
        team_store,
        mailbox,
        supervisor,
        poll_interval_s: float = 0.1,
        member_timeout_s: float = MEMBER_SHUTDOWN_TIMEOUT_S,
        team_timeout_s: float = TEAM_SHUTDOWN_TIMEOUT_S,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.team_store = team_store
        self.mailbox = mailbox
        self.supervisor = supervisor
        self.poll_interval_s = max(0.01, float(poll_interval_s))
        self.member_timeout_s = float(member_timeout_s)
        self.team_timeout_s = float(team_timeout_s)
        self._sleep = sleep

    def request_shutdown(self, team_name: str, member_id: str, timeout_s: Optional[float] = None) -> ShutdownOutcome:
        """Ask one member to stop and wait for its answer in the leader mailbox."""
        team = sanitize_name(team_name)
        member = self.team_store.get_member(team, member_id)
        timeout = self.member_timeout_s if timeout_s is None else max(0.0, float(timeout_s))
        if not member.is_active:
            return ShutdownOutcome(
                team=team,
                member=member.id,
                state=ShutdownState.APPROVED,
                reason="member already inactive",
            )

        started = time.monotonic()
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        # Responses can only land after the request, so scanning starts here.
        offset = self.mailbox.count(team, LEADER_MAILBOX)
        self.mailbox.send(
            team,
            LEADER_MAILBOX,
            member.id,
            kind=MessageKind.SHUTDOWN_REQUEST,
            body="The leader asks you to finish up and shut down.",
            summary="shutdown requested",
            request_id=request_id,
            # Past this instant the request is superseded by a timed_out outcome.
            expires_at=time.time() + timeout,
        )
        logger.info("Shutdown %s requested for %s/%s (timeout %.1fs)", request_id, team, member.id, timeout)

        deadline = started + timeout
        while True:
            response = self._find_response(team, member.id, request_id, offset)
            if response is not None:
                elapsed = time.monotonic() - started
                if response.approve:
                    self._stop_member(team, member.id)
                    logger.info("Member %s/%s shut down cooperatively (%s)", team, member.id, request_id)
                    return ShutdownOutcome(
                        team=team,
                        member=member.id,
                        state=ShutdownState.APPROVED,
                        request_id=request_id,
                        reason=response.body,
                        elapsed_s=elapsed,
                    )
                logger.info("Member %s/%s denied shutdown %s: %s", team, member.id, request_id, response.body)
                return ShutdownOutcome(
                    team=team,
                    member=member.id,
                    state=ShutdownState.DENIED,
                    request_id=request_id,
                    reason=response.body,
                    elapsed_s=elapsed,
                )
            if time.monotonic() >= deadline:
                break
            self._sleep(min(self.poll_interval_s, max(0.0, deadline - time.monotonic())))

        logger.warning("Shutdown %s for %s/%s timed out after %.1fs", request_id, team, member.id, timeout)
        return ShutdownOutcome(
            team=team,
            member=member.id,
            state=ShutdownState.TIMED_OUT,
            request_id=request_id,
            reason=f"no shutdown_response within {timeout:.1f}s",
            elapsed_s=time.monotonic() - started,
        )

    def force_shutdown(self, team_name: str, member_id: str, reason: str = "") -> ShutdownOutcome:
        """Terminate and deactivate regardless of what the member wants."""
        team = sanitize_name(team_name)
        member = self.team_store.get_member(team, member_id)
        self._stop_member(team, member.id)
        logger.warning(
            "FORCED termination of %s/%s%s",
            team,
            member.id,
            f": {reason}" if reason else "",
        )
        return ShutdownOutcome(team=team, member=member.id, state=ShutdownState.FORCED, reason=reason)

    def shutdown_team(
        self,
        team_name: str,
        timeout_s: Optional[float] = None,
        force: bool = False,
    ) -> List[ShutdownOutcome]:
        """Request shutdown of every active member concurrently.

        Each request has its own deadline. With ``force``, members that did
        not approve are force-terminated afterwards.
        """
        team = sanitize_name(team_name)
        timeout = self.team_timeout_s if timeout_s is None else float(timeout_s)
        members = [m.id for m in self.team_store.read_team(team).active_members()]
        if not members:
            return []

        outcomes: List[ShutdownOutcome] = []
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=len(members),
            thread_name_prefix=f"shutdown-{team}",
        ) as executor:
            futures = {executor.submit(self.request_shutdown, team, mid, timeout): mid for mid in members}
            for future in concurrent.futures.as_completed(futures):
                member_id = futures[future]
                try:
                    outcomes.append(future.result())
                except Exception as exc:  # one failed request must not drop the other outcomes
                    logger.warning("Shutdown of %s/%s failed: %s", team, member_id, exc)
                    outcomes.append(
                        ShutdownOutcome(
                            team=team,
                            member=member_id,
                            state=ShutdownState.TIMED_OUT,
                            reason=f"shutdown request failed: {exc}",
                        )
                    )

        if force:
            outcomes = [self._escalate(team, o) for o in outcomes]
        outcomes.sort(key=lambda o: members.index(o.member))
        return outcomes

    def _escalate(self, team: str, outcome: ShutdownOutcome) -> ShutdownOutcome:
        if outcome.state == ShutdownState.APPROVED:
            return outcome
        try:
            return self.force_shutdown(team, outcome.member, reason=f"shutdown {outcome.state.value}")
        except TeamEngineError as exc:
            logger.warning("Forced shutdown of %s/%s failed: %s", team, outcome.member, exc.message)
            return outcome

    def _find_response(self, team: str, member_id: str, request_id: str, offset: int) -> Optional[MailboxEntry]:
        for entry in self.mailbox.read_since(team, LEADER_MAILBOX, offset):
            if entry.kind != MessageKind.SHUTDOWN_RESPONSE:
                continue
            if entry.sender == member_id and entry.request_id == request_id:
                return entry
        return None

    def _stop_member(self, team: str, member_id: str) -> None:
        # Terminate before deactivating: the handle is cleared on deactivation.
        member = self.team_store.get_member(team, member_id)
        self.supervisor.terminate(team, member.id, member.process_handle)
        if member.is_active:
            self.team_store.deactivate_member(team, member.id)
