import argparse
import json
import sys
from typing import Any, Dict, Iterable, List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:8000"
TERMINAL_EVENTS = {"batch_finished"}


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def condense_text(value: str, limit: int = 160) -> str:
    compact = " ".join(value.split())
    if len(compact) <= limit:
        return compact
    return compact[: max(0, limit - 3)] + "..."


def load_team(path: str) -> Dict[str, Any]:
    """Read agents and credentials from a JSON file: {"agents": [...], "credentials": [...]}."""
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict) or not data.get("agents"):
        raise ValueError(f"{path} must contain an 'agents' list")
    return {"agents": data["agents"], "credentials": data.get("credentials") or []}


def iter_sse_events(response: httpx.Response) -> Iterable[Dict[str, Any]]:
    data_lines: List[str] = []
    for raw_line in response.iter_lines():
        line = raw_line.strip()
        if not line:
            if data_lines:
                joined = "\n".join(data_lines)
                data_lines.clear()
                try:
                    yield json.loads(joined)
                except json.JSONDecodeError:
                    continue
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())


def format_event(event: Dict[str, Any]) -> str:
    event_type = event.get("event_type", "")
    payload = event.get("payload") or {}
    agent = payload.get("agent_id")
    prefix = f"[{agent}] " if agent else ""
    if event_type == "tool_start":
        return f"{prefix}-> {payload.get('tool')} {condense_text(json.dumps(payload.get('args') or {}), 120)}"
    if event_type == "tool_end":
        return f"{prefix}<- {payload.get('tool')} {condense_text(json.dumps(payload.get('result'), default=str), 120)}"
    if event_type == "plan_ready":
        lines = [f"plan from {payload.get('planner')}:"]
        for agent_id, instruction in (payload.get("plan") or {}).items():
            lines.append(f"  {agent_id}: {condense_text(str(instruction), 140)}")
        return "\n".join(lines)
    if event_type == "agent_failed":
        return f"{prefix}failed: {payload.get('error')}"
    return f"{prefix}{event_type}"


def watch_session(client: httpx.Client, base: str, session_id: str, until_done: bool = True) -> None:
    url = _join_url(base, f"/api/sessions/{session_id}/events")
    with client.stream("GET", url) as response:
        response.raise_for_status()
        for event in iter_sse_events(response):
            print(format_event(event))
            if until_done and event.get("event_type") in TERMINAL_EVENTS:
                return


def print_history(client: httpx.Client, base: str, session_id: str) -> int:
    resp = client.get(_join_url(base, f"/api/sessions/{session_id}/messages"), timeout=10)
    if resp.status_code >= 400:
        print(f"Failed to fetch history: HTTP {resp.status_code}")
        return 1
    for msg in resp.json().get("messages") or []:
        role = msg.get("role")
        if role == "system":
            continue
        who = "user" if role == "user" else msg.get("agent_id")
        print(f"{who}> {msg.get('content', '')}")
    return 0


def run_models(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.post(
            _join_url(args.base_url, "/api/models"),
            json={"provider": args.provider, "secret": args.key or ""},
            timeout=30,
        )
        if resp.status_code >= 400:
            print(f"Failed to list models: HTTP {resp.status_code}")
            return 1
        for model in resp.json().get("models") or []:
            print(model)
    return 0


def run_ask(args: argparse.Namespace) -> int:
    try:
        team = load_team(args.team)
    except (OSError, ValueError) as exc:
        print(f"Failed to read team file: {exc}", file=sys.stderr)
        return 1
    payload = {**team, "message": " ".join(args.message), "mode": args.mode}
    with httpx.Client(timeout=httpx.Timeout(10.0, read=None)) as client:
        resp = client.post(_join_url(args.base_url, f"/api/sessions/{args.session}/messages"), json=payload)
        if resp.status_code >= 400:
            print(f"Failed to send message: HTTP {resp.status_code} {resp.text}")
            return 1
        if args.no_wait:
            print(json.dumps(resp.json()))
            return 0
        watch_session(client, args.base_url, args.session)
        return print_history(client, args.base_url, args.session)


def run_stop(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.post(_join_url(args.base_url, f"/api/sessions/{args.session}/stop"), timeout=10)
        if resp.status_code >= 400:
            print(f"Failed to stop session: HTTP {resp.status_code}")
            return 1
        print(resp.json().get("status"))
    return 0


def run_history(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        return print_history(client, args.base_url, args.session)


def run_watch(args: argparse.Namespace) -> int:
    try:
        with httpx.Client(timeout=httpx.Timeout(10.0, read=None)) as client:
            watch_session(client, args.base_url, args.session, until_done=not args.follow)
    except KeyboardInterrupt:
        pass
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Code Studio CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    parser.add_argument("--session", default="default", help="Session id")
    subparsers = parser.add_subparsers(dest="command")

    models = subparsers.add_parser("models", help="List models for a provider")
    models.add_argument("provider")
    models.add_argument("--key", help="Provider API key")

    ask = subparsers.add_parser("ask", help="Send a message to a team of agents")
    ask.add_argument("--team", required=True, help="JSON file with agents and credentials")
    ask.add_argument("--mode", default="code", choices=["code", "creative"])
    ask.add_argument("--no-wait", action="store_true", help="Return immediately instead of streaming events")
    ask.add_argument("message", nargs="+")

    subparsers.add_parser("stop", help="Cancel the in-flight batch")
    subparsers.add_parser("history", help="Print the merged conversation")

    watch = subparsers.add_parser("watch", help="Stream session events")
    watch.add_argument("--follow", action="store_true", help="Keep streaming after the batch finishes")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handlers = {
        "models": run_models,
        "ask": run_ask,
        "stop": run_stop,
        "history": run_history,
        "watch": run_watch,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
