"""In-memory stand-ins for tmux and for an isolated member's process."""

import threading
import time
from typing import Dict, List, Optional, Tuple

from teamwire.team_engine.protocol import LEADER_MAILBOX, MessageKind


class FakeTmux:
    """Command runner that keeps a tiny model of a tmux server.

    ``spawn_fails`` makes ``split-window`` fail; ``spawn_dies`` creates the
    pane but lets it die at once, like a worker that crashes on start.
    """

    def __init__(self, installed: bool = True, spawn_fails: bool = False, spawn_dies: bool = False):
        self.installed = installed
        self.spawn_fails = spawn_fails
        self.spawn_dies = spawn_dies
        self.sessions = set()
        self.panes: Dict[str, Dict[str, str]] = {}
        self.calls: List[List[str]] = []
        self._next_pane = 1

    def __call__(self, argv: List[str]) -> Tuple[int, str]:
        self.calls.append(list(argv))
        if not self.installed:
            return 127, "tmux: command not found"
        args = argv[1:]
        verb = args[0]
        if verb == "-V":
            return 0, "tmux 3.4"
        if verb == "has-session":
            return (0, "") if args[2] in self.sessions else (1, "no such session")
        if verb == "new-session":
            self.sessions.add(args[args.index("-s") + 1])
            return 0, ""
        if verb == "split-window":
            if self.spawn_fails:
                return 1, "create pane failed"
            pane_id = f"%{self._next_pane}"
            self._next_pane += 1
            if not self.spawn_dies:
                self.panes[pane_id] = {"session": args[args.index("-t") + 1], "title": ""}
            return 0, pane_id + "\n"
        if verb == "select-pane":
            pane_id = args[args.index("-t") + 1]
            if pane_id in self.panes:
                self.panes[pane_id]["title"] = args[args.index("-T") + 1]
            return 0, ""
        if verb == "list-panes":
            lines = [f"{pid}\t{info['session']}\t0\t{info['title']}" for pid, info in list(self.panes.items())]
            return 0, "\n".join(lines)
        if verb == "kill-pane":
            pane_id = args[args.index("-t") + 1]
            if self.panes.pop(pane_id, None) is None:
                return 1, f"can't find pane: {pane_id}"
            return 0, ""
        if verb == "kill-session":
            session = args[args.index("-t") + 1]
            if session not in self.sessions:
                return 1, "no such session"
            self.sessions.discard(session)
            self.panes = {pid: info for pid, info in self.panes.items() if info["session"] != session}
            return 0, ""
        return 0, ""

    def add_pane(self, title: str, session: str = "teamwire_other") -> str:
        pane_id = f"%{self._next_pane}"
        self._next_pane += 1
        self.panes[pane_id] = {"session": session, "title": title}
        return pane_id

    def commands(self, verb: str) -> List[List[str]]:
        return [call for call in self.calls if len(call) > 1 and call[1] == verb]


class ShutdownResponder(threading.Thread):
    """Plays the isolated member's side of the shutdown handshake."""

    def __init__(self, mailbox, team_name: str, member_id: str, approve: bool = True, delay_s: float = 0.0):
        super().__init__(daemon=True)
        self.mailbox = mailbox
        self.team_name = team_name
        self.member_id = member_id
        self.approve = approve
        self.delay_s = delay_s
        self.answered: Optional[str] = None
        self._halt = threading.Event()

    def run(self) -> None:
        while not self._halt.is_set():
            for entry in self.mailbox.receive(self.team_name, self.member_id):
                if entry.kind != MessageKind.SHUTDOWN_REQUEST:
                    continue
                time.sleep(self.delay_s)
                self.mailbox.send(
                    self.team_name,
                    self.member_id,
                    LEADER_MAILBOX,
                    kind=MessageKind.SHUTDOWN_RESPONSE,
                    body="ok" if self.approve else "still busy",
                    request_id=entry.request_id,
                    approve=self.approve,
                )
                self.answered = entry.request_id
                return
            self._halt.wait(0.01)

    def stop(self) -> None:
        self._halt.set()
