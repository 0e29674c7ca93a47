"""``teamwire`` command line: the leader's commands surface plus the worker entry point."""

import argparse
import json
import os
import sys
import threading
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme
from rich.tree import Tree

from teamwire.commands import ErrorCode, build_commands
from teamwire.config import Config
from teamwire.env import getenv
from teamwire.logger import setup_logger
from teamwire.team_engine.agent import MemberAgent
from teamwire.team_engine.errors import TeamEngineError
from teamwire.team_engine.manager import TeamManager
from teamwire.team_engine.models import TaskGraph

EXIT_OK = 0
EXIT_CODES = {
    ErrorCode.INTERNAL_ERROR.value: 1,
    ErrorCode.NOT_FOUND.value: 3,
    ErrorCode.ALREADY_EXISTS.value: 4,
    ErrorCode.DUPLICATE_MEMBER.value: 5,
    ErrorCode.CYCLE_DETECTED.value: 6,
    ErrorCode.STILL_BLOCKED.value: 7,
    ErrorCode.MEMBERS_STILL_ACTIVE.value: 8,
    ErrorCode.PREREQUISITE_MISSING.value: 9,
    ErrorCode.SPAWN_FAILED.value: 10,
    ErrorCode.TIMED_OUT.value: 11,
    ErrorCode.DENIED.value: 12,
    ErrorCode.INVALID_TRANSITION.value: 13,
    ErrorCode.INVALID_PARAM.value: 14,
}

theme = Theme(
    {
        "info": "bright_cyan",
        "warning": "bright_yellow",
        "error": "bold bright_red",
        "member": "bold bright_green",
    }
)

LIVENESS_STYLES = {
    "active": "bright_green",
    "idle": "bright_cyan",
    "stale": "bright_yellow",
    "offline": "bold bright_red",
    "inactive": "dim",
}

TASK_STATUS_STYLES = {
    "pending": "bright_yellow",
    "in_progress": "bright_cyan",
    "completed": "bright_green",
    "cancelled": "dim",
}


def exit_code_for(code: str) -> int:
    return EXIT_CODES.get(code, EXIT_CODES[ErrorCode.INTERNAL_ERROR.value])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="teamwire", description="Team orchestration and messaging")
    parser.add_argument("--root", default=None, help="project root holding .teams/ and .tasks/")
    parser.add_argument("--log-level", default=None, help="override TEAMWIRE_LOG_LEVEL")
    parser.add_argument("--json", action="store_true", help="print the raw JSON envelope")
    parser.add_argument(
        "--leader-id",
        default=None,
        help="leader process id recorded on new teams (default: the invoking shell)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-team", help="create a team")
    p.add_argument("team")
    p.add_argument("--description", default="")

    p = sub.add_parser("add-member", help="register and spawn a member")
    p.add_argument("team")
    p.add_argument("name")
    p.add_argument("--role", default="worker")
    p.add_argument("--model-class", default="")
    p.add_argument(
        "--mode",
        default="isolated",
        help="isolated | embedded | auto (embedded members live only as long as this process)",
    )

    p = sub.add_parser("send", help="send a message to a member or to 'all'")
    p.add_argument("team")
    p.add_argument("to")
    p.add_argument("body")
    p.add_argument("--summary", default="")
    p.add_argument("--from", dest="sender", default=None)

    p = sub.add_parser("create-task", help="create a task")
    p.add_argument("team")
    p.add_argument("subject")
    p.add_argument("--description", default="")
    p.add_argument("--owner", default=None)
    p.add_argument("--blocked-by", nargs="*", default=[])
    p.add_argument("--blocks", nargs="*", default=[])
    p.add_argument("--priority", default="medium")

    p = sub.add_parser("transition-task", help="change a task's status")
    p.add_argument("team")
    p.add_argument("task_id")
    p.add_argument("status")

    p = sub.add_parser("request-shutdown", help="shutdown handshake with a member or 'all'")
    p.add_argument("team")
    p.add_argument("member")
    p.add_argument("--timeout", type=float, default=None)
    p.add_argument("--force", action="store_true")

    p = sub.add_parser("delete-team", help="delete a team and all of its data")
    p.add_argument("team")
    p.add_argument("--teardown", action="store_true", help="shut every member down first")
    p.add_argument("--force", action="store_true")
    p.add_argument("--timeout", type=float, default=None)

    p = sub.add_parser("status", help="show members, liveness and tasks")
    p.add_argument("team")

    p = sub.add_parser("reconcile", help="deactivate members whose process is gone")
    p.add_argument("team")

    p = sub.add_parser("graph", help="show the task dependency graph")
    p.add_argument("team")
    p.add_argument("--format", choices=["text", "dot"], default="text")
    p.add_argument("--check-cycles", action="store_true", help="only report circular dependencies")

    p = sub.add_parser("orphans", help="list teammate panes no active member owns")
    p.add_argument("--kill", action="store_true")

    p = sub.add_parser("cleanup-session", help="force down and delete every team of a leader")
    p.add_argument("session_leader", nargs="?", default=None, help="leader id (default: --leader-id)")

    p = sub.add_parser("worker", help="run a member loop (started inside a tmux pane)")
    p.add_argument("--root", default=argparse.SUPPRESS, help="project root")
    p.add_argument("--team", default=getenv("TEAMWIRE_TEAM"))
    p.add_argument("--member", default=getenv("TEAMWIRE_MEMBER"))
    p.add_argument("--poll-interval", type=float, default=None)
    return parser


def _command_params(args: argparse.Namespace) -> Optional[tuple]:
    """Map a subcommand to ``(command name, parameters)`` for the commands layer."""
    if args.command == "create-team":
        return "TeamCreate", {"team_name": args.team, "description": args.description}
    if args.command == "add-member":
        return "MemberAdd", {
            "team_name": args.team,
            "name": args.name,
            "role_type": args.role,
            "model_class": args.model_class,
            "execution_mode": args.mode,
        }
    if args.command == "send":
        params: Dict[str, Any] = {"team_name": args.team, "to": args.to, "body": args.body, "summary": args.summary}
        if args.sender:
            params["from"] = args.sender
        return "SendMessage", params
    if args.command == "create-task":
        return "TaskCreate", {
            "team_name": args.team,
            "subject": args.subject,
            "description": args.description,
            "owner": args.owner,
            "blocked_by": list(args.blocked_by),
            "blocks": list(args.blocks),
            "priority": args.priority,
        }
    if args.command == "transition-task":
        return "TaskTransition", {"team_name": args.team, "task_id": args.task_id, "status": args.status}
    if args.command == "request-shutdown":
        return "ShutdownRequest", {
            "team_name": args.team,
            "member": args.member,
            "timeout_s": args.timeout,
            "force": args.force,
        }
    if args.command == "delete-team":
        return "TeamDelete", {
            "team_name": args.team,
            "teardown": args.teardown,
            "force": args.force,
            "timeout_s": args.timeout,
        }
    if args.command == "status":
        return "TeamStatus", {"team_name": args.team}
    return None


def render_status(console: Console, status: Dict[str, Any]) -> None:
    table = Table(title=f"Team {status['team_name']}", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="member")
    table.add_column("Role")
    table.add_column("Mode")
    table.add_column("Liveness")
    table.add_column("Handle")
    table.add_column("Unread", justify="right")
    table.add_column("Open tasks", justify="right")
    for member in status["members"]:
        liveness = member.get("liveness") or "-"
        table.add_row(
            member["id"],
            member["role_type"],
            member["execution_mode"],
            f"[{LIVENESS_STYLES.get(liveness, 'white')}]{liveness}[/]",
            member.get("process_handle") or "-",
            str(member.get("unread", 0)),
            str(member.get("open_tasks", 0)),
        )
    console.print(table)
    counts = "  ".join(f"{k}={v}" for k, v in status["task_counts"].items())
    console.print(f"[info]tasks[/]: {counts}  ready={len(status['ready_tasks'])}")
    console.print(f"[info]leader unread[/]: {status['leader_unread']}")
    for warning in status["warnings"]:
        console.print(f"[warning]warning[/]: {warning}")


def _task_label(task) -> str:
    status = task.status.value
    owner = f" ({escape(task.owner)})" if task.owner else ""
    return f"[{TASK_STATUS_STYLES.get(status, 'white')}]{status}[/] {task.id[:8]} {escape(task.subject)}{owner}"


def build_graph_tree(graph: TaskGraph) -> Tree:
    """Blocker-to-dependent tree rooted at the tasks nothing blocks.

    A task with several blockers appears under each of them.
    """
    tree = Tree(f"[bold]Task dependencies: {escape(graph.team)}[/] ({len(graph.tasks)} tasks)")

    def grow(branch: Tree, task_id: str, path: frozenset) -> None:
        for child_id in graph.children(task_id):
            child = graph.get(child_id)
            if child_id in path:
                branch.add(f"[warning]cycle back to {child_id[:8]}[/]")
                continue
            grow(branch.add(_task_label(child)), child_id, path | {child_id})

    for root_id in graph.roots:
        grow(tree.add(_task_label(graph.get(root_id))), root_id, frozenset({root_id}))
    if not graph.tasks:
        tree.add("[dim]no tasks[/]")
    elif not graph.roots:
        tree.add("[warning]every task is blocked; run with --check-cycles[/]")
    return tree


def render_graph(console: Console, args: argparse.Namespace, manager: TeamManager, as_json: bool) -> int:
    if args.check_cycles:
        cycles = manager.find_cycles(args.team)
        if as_json:
            console.print_json(data={"team_name": args.team, "cycles": cycles})
        elif cycles:
            for cycle in cycles:
                console.print(f"[warning]cycle[/]: {' -> '.join(cycle)}")
        else:
            console.print("[info]no circular dependencies[/]")
        return exit_code_for(ErrorCode.CYCLE_DETECTED.value) if cycles else EXIT_OK

    graph = manager.dependency_graph(args.team)
    if as_json:
        console.print_json(data=graph.model_dump(mode="json"))
    elif args.format == "dot":
        console.out(graph.to_dot(), highlight=False)
    else:
        console.print(build_graph_tree(graph))
    return EXIT_OK


def _print_envelope(console: Console, err_console: Console, envelope: Dict[str, Any], as_json: bool) -> int:
    if as_json:
        console.print_json(data=envelope)
    elif envelope["status"] == "error":
        err_console.print(f"[error]{envelope['error']['code']}[/]: {envelope['text']}")
    elif envelope.get("context", {}).get("command") == "TeamStatus":
        render_status(console, envelope["data"])
    else:
        style = "warning" if envelope["status"] == "partial" else "info"
        console.print(f"[{style}]{envelope['text']}[/]")
        if envelope["data"].get("id"):
            console.print(f"id: {envelope['data']['id']}")
    if envelope["status"] == "error":
        return exit_code_for(envelope["error"]["code"])
    return EXIT_OK


def run_worker(args: argparse.Namespace, config: Config, console: Console) -> int:
    """Member loop for an isolated teammate; returns once shutdown is approved."""
    if not args.team or not args.member:
        console.print("[error]INVALID_PARAM[/]: worker needs --team and --member")
        return exit_code_for(ErrorCode.INVALID_PARAM.value)
    manager = TeamManager(project_root=config.root_dir, config=config, leader_session="")

    def show(agent: MemberAgent, entry) -> None:
        console.print(f"[member]{entry.sender}[/] -> {agent.member_id} [{entry.kind.value}] {entry.summary or entry.body}")

    agent = MemberAgent(
        manager.mailbox,
        manager.task_board,
        team_name=args.team,
        member_id=args.member,
        handler=show,
    )
    stop_event = threading.Event()
    try:
        agent.run(poll_interval_s=args.poll_interval or config.poll_interval_s, stop_event=stop_event)
    except KeyboardInterrupt:
        stop_event.set()
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = Config.from_env()
    if args.root:
        config.root_dir = args.root
    setup_logger(level=args.log_level or config.log_level)
    console = Console(theme=theme)
    err_console = Console(theme=theme, stderr=True)

    if args.command == "worker":
        return run_worker(args, config, console)

    leader_id = args.leader_id or getenv("TEAMWIRE_LEADER_PID") or str(os.getppid())
    try:
        manager = TeamManager(project_root=config.root_dir, config=config, leader_process_id=leader_id)
        mapped = _command_params(args)
        if mapped is not None:
            name, params = mapped
            envelope = json.loads(build_commands(manager).get(name).run(params))
            return _print_envelope(console, err_console, envelope, args.json)
        if args.command == "graph":
            return render_graph(console, args, manager, args.json)

        if args.command == "reconcile":
            result: Dict[str, Any] = {"team_name": args.team, "deactivated": manager.reconcile(args.team)}
        elif args.command == "orphans":
            panes = manager.kill_orphan_panes() if args.kill else manager.find_orphan_panes()
            result = {"panes": panes, "killed": bool(args.kill)}
        else:
            result = {"teams": manager.cleanup_leader_session(args.session_leader or leader_id)}
    except TeamEngineError as exc:
        err_console.print(f"[error]{exc.code}[/]: {exc.message}")
        return exit_code_for(exc.code)

    if args.json:
        console.print_json(data=result)
    else:
        for key, value in result.items():
            console.print(f"[info]{key}[/]: {value}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
