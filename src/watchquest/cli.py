from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any
from uuid import uuid4

import uvicorn

from .achievements import EffectUsage
from .api import create_app
from .catalog import QuestScope
from .errors import EngineError
from .service import WatchQuestService, parse_day


def _service() -> WatchQuestService:
    return WatchQuestService.create()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _print_quests(view: dict[str, Any]) -> None:
    print(f"{view['scope'].title()} quests for {view['period_key']} (reset in {view['reset_in_seconds']}s)")
    for quest in view.get("quests", []):
        if quest["is_claimed"]:
            status = "claimed"
        elif quest["is_completed"]:
            status = "ready"
        else:
            status = f"{quest['progress']}/{quest['target']} {quest['unit']}"
        print(f"- {quest['claim_key']} :: {quest['title']} [{status}] +{quest['reward_xp']} XP")


def main() -> int:
    parser = argparse.ArgumentParser(description="WatchQuest progression engine CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    quests_cmd = sub.add_parser("quests", help="Show active quests")
    quests_cmd.add_argument("--weekly", action="store_true", help="Show the weekly rotation instead of the daily one")
    quests_cmd.add_argument("--date", default=None, help="Date in YYYY-MM-DD (defaults to the trusted day)")
    quests_cmd.add_argument("--json", action="store_true", help="Print raw JSON")

    claim_cmd = sub.add_parser("claim", help="Claim a completed quest")
    claim_cmd.add_argument("claim_key", help="Key like daily:2026-10-19:daily_watch_30m")

    sub.add_parser("profile", help="Print level, prestige, and streak")
    sub.add_parser("achievements", help="Print achievement progress")
    sub.add_parser("prestige", help="Prestige at max level")
    sub.add_parser("sync-clock", help="Sync the trusted clock against remote time")

    session_cmd = sub.add_parser("record-session", help="Credit eligible watch seconds")
    session_cmd.add_argument("--seconds", type=int, required=True)
    session_cmd.add_argument("--effects", action="store_true", help="Effects were active during the session")
    session_cmd.add_argument("--session-id", default=None)
    session_cmd.add_argument("--date", default=None, help="Date in YYYY-MM-DD (defaults to the trusted day)")

    open_cmd = sub.add_parser("open", help="Mark a video as opened")
    open_cmd.add_argument("video_id")

    finish_cmd = sub.add_parser("finish", help="Close a video and pay watch XP")
    finish_cmd.add_argument("video_id")
    finish_cmd.add_argument("--playback-seconds", type=int, default=0)
    finish_cmd.add_argument("--watch-xp", type=int, default=0)
    finish_cmd.add_argument("--effects", type=int, default=0, help="Highest number of effects enabled at once")

    favorite_cmd = sub.add_parser("favorite", help="Add or remove a favorite")
    favorite_cmd.add_argument("video_id")
    favorite_cmd.add_argument("--remove", action="store_true")

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_export = telemetry_sub.add_parser("export", help="Export aggregated telemetry summary")
    telemetry_export.add_argument("--range", default="7d", help="Range window like 7d or 24h")
    telemetry_export.add_argument("--out", default=None, help="Optional output JSON path")

    api_cmd = sub.add_parser("api", help="Run local API server with background timers")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    service = _service()
    trace_id = f"cli:{uuid4()}"
    try:
        return _dispatch(args, service, trace_id)
    except EngineError as exc:
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 2


def _dispatch(args: argparse.Namespace, service: WatchQuestService, trace_id: str) -> int:
    if args.command == "quests":
        scope = QuestScope.WEEKLY if args.weekly else QuestScope.DAILY
        view = service.quests_view(scope, parse_day(args.date))
        if args.json:
            _print_json(view)
        else:
            _print_quests(view)
        return 0
    if args.command == "claim":
        claimed = service.claim_quest(args.claim_key, source="cli", trace_id=trace_id)
        _print_json({"claim_key": args.claim_key, "claimed": claimed})
        return 0 if claimed else 1
    if args.command == "profile":
        _print_json(service.get_profile())
        return 0
    if args.command == "achievements":
        _print_json(service.get_achievements())
        return 0
    if args.command == "prestige":
        _print_json(service.prestige(source="cli", trace_id=trace_id))
        return 0
    if args.command == "sync-clock":
        synced = service.sync_clock(source="cli")
        _print_json({"synced": synced, **service.clock_status()})
        return 0 if synced else 1
    if args.command == "record-session":
        _print_json(
            service.record_session(
                args.seconds,
                args.effects,
                session_id=args.session_id,
                day=parse_day(args.date),
                source="cli",
                trace_id=trace_id,
            )
        )
        return 0
    if args.command == "open":
        _print_json(service.open_video(args.video_id, source="cli", trace_id=trace_id))
        return 0
    if args.command == "finish":
        usage = EffectUsage(any_effects=args.effects > 0, max_enabled_effects=max(0, args.effects))
        _print_json(
            service.finish_video(
                args.video_id,
                playback_seconds=args.playback_seconds,
                watch_xp=args.watch_xp,
                usage=usage,
                source="cli",
                trace_id=trace_id,
            )
        )
        return 0
    if args.command == "favorite":
        _print_json(service.set_favorite(args.video_id, not args.remove, source="cli", trace_id=trace_id))
        return 0
    if args.command == "telemetry":
        if args.telemetry_command == "status":
            _print_json(service.telemetry_status())
            return 0
        if args.telemetry_command == "export":
            out_path = Path(args.out) if args.out else None
            _print_json(service.telemetry_summary(args.range, out_path=out_path))
            return 0
    if args.command == "api":
        app = create_app(service)
        service.start_background()
        try:
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        finally:
            service.stop_background()
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
