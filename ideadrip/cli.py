import argparse
import json
import logging
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

from .config import DispatchSettings
from .db import get_engine, init_schema
from .errors import PopulationLoadFailure
from .service import email_history, run_dispatch, send_test


def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="ideadrip", description="Weekly video-idea email dispatcher")
    p.add_argument("--verbose", action="store_true")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run-once", help="Run one dispatch pass now")
    run.add_argument("--at", default=None, help="ISO-8601 instant to use as 'now' (must include offset)")
    run.add_argument("--dry-run", action="store_true", help="Do not actually send email")

    serve = sub.add_parser("serve", help="Serve the authorized HTTP trigger")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    test = sub.add_parser("send-test", help="Send one user's digest immediately")
    test.add_argument("user_id")
    test.add_argument("--dry-run", action="store_true")

    history = sub.add_parser("history", help="Show a user's recent digests, newest first")
    history.add_argument("user_id")
    history.add_argument("--limit", type=int, default=5)
    history.add_argument("--page", type=int, default=1)

    sub.add_parser("init-db", help="Create missing tables")
    return p.parse_args(argv)


def _parse_instant(raw):
    if not raw:
        return datetime.now(timezone.utc)
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        raise SystemExit("--at must include a UTC offset, e.g. 2026-10-19T13:00:00Z")
    return dt


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = DispatchSettings.from_env()

    if args.command == "init-db":
        init_schema(get_engine())
        print("schema ok")
        return 0

    if args.command == "run-once":
        if args.dry_run:
            settings.dry_run = True
        try:
            summary = run_dispatch(settings, now=_parse_instant(args.at))
        except PopulationLoadFailure as exc:
            print(f"[ABORT] {exc}", file=sys.stderr)
            return 2
        print(json.dumps(summary.to_dict(), indent=2))
        return 0

    if args.command == "send-test":
        if args.dry_run:
            settings.dry_run = True
        try:
            result = send_test(args.user_id, settings)
        except LookupError as exc:
            print(f"[ERROR] {exc}", file=sys.stderr)
            return 1
        print(result.value)
        return 0 if result.value == "sent" else 1

    if args.command == "history":
        try:
            rows = email_history(args.user_id, limit=args.limit, page=args.page)
        except ValueError as exc:
            print(f"[ERROR] {exc}", file=sys.stderr)
            return 1
        print(json.dumps(rows, indent=2))
        return 0

    if args.command == "serve":
        from .server import serve

        serve(settings, lambda now: run_dispatch(settings, now=now), host=args.host, port=args.port)
        return 0

    return 1
