#!/usr/bin/env python3
"""Operator CLI for the Outreach Agent.

Usage:
    outreach-agent serve                         # Run the API server
    outreach-agent init-db                       # Create database tables
    outreach-agent check-config                  # Validate settings
    outreach-agent eligible --owner-id <uuid>    # List eligible cases
    outreach-agent schedule-times                # Show default batch times
"""

from __future__ import annotations

import argparse
import asyncio
import json
from uuid import UUID

from outreach_agent.config import get_settings, validate_production_settings
from outreach_agent.core.logging import setup_logging


def serve(args: argparse.Namespace) -> int:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "outreach_agent.main:create_app",
        factory=True,
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=args.reload,
    )
    return 0


def init_database(args: argparse.Namespace) -> int:
    """Create all tables in the configured database."""
    from outreach_agent.db.session import close_db, init_db

    async def run() -> None:
        await init_db()
        await close_db()

    asyncio.run(run())
    print(f"[OK] Database initialized: {get_settings().database.url}")
    return 0


def check_config(args: argparse.Namespace) -> int:
    """Print production configuration problems."""
    settings = get_settings()
    errors = validate_production_settings(settings)

    print(f"Environment: {settings.environment}")
    print(f"Scheduler:   {settings.scheduler.provider}")
    print(f"Database:    {settings.database.url}")

    if errors:
        print("\nConfiguration errors:")
        for error in errors:
            print(f"  - {error}")
        return 1

    print("\n[OK] Configuration valid")
    return 0


def list_eligible(args: argparse.Namespace) -> int:
    """List an owner's cases that still need outreach."""
    from outreach_agent.batch.processor import EligibleCase, load_eligible_cases
    from outreach_agent.db.session import close_db, get_db_context

    async def run() -> list[EligibleCase]:
        try:
            async with get_db_context() as session:
                return await load_eligible_cases(session, args.owner_id)
        finally:
            await close_db()

    eligible = asyncio.run(run())

    if args.json:
        print(json.dumps([case.to_dict() for case in eligible], indent=2))
        return 0

    print(f"\n{len(eligible)} eligible case(s)\n")
    for case in eligible:
        contact = ", ".join(filter(None, [case.owner_email, case.owner_phone]))
        print(f"  {case.id}  {case.patient_name:<24} {contact}")
    return 0


def schedule_times(args: argparse.Namespace) -> int:
    """Show the default email and call times for a batch created now."""
    from outreach_agent.batch.processor import calculate_schedule_times

    config = get_settings().batch
    times = calculate_schedule_times(
        args.email_time or config.default_email_time,
        args.call_time or config.default_call_time,
        args.timezone or config.timezone,
        email_delay_days=config.email_delay_days,
        call_delay_days=config.call_delay_days,
    )
    print(f"Email: {times.email_schedule_time.isoformat()}")
    print(f"Call:  {times.call_schedule_time.isoformat()}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Outreach Agent CLI Tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # init-db
    subparsers.add_parser("init-db", help="Create database tables")

    # check-config
    subparsers.add_parser("check-config", help="Validate configuration for production")

    # eligible
    eligible_parser = subparsers.add_parser("eligible", help="List eligible cases")
    eligible_parser.add_argument("--owner-id", type=UUID, required=True)
    eligible_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # schedule-times
    times_parser = subparsers.add_parser("schedule-times", help="Show default batch times")
    times_parser.add_argument("--email-time", type=str, default=None, help="Local HH:MM")
    times_parser.add_argument("--call-time", type=str, default=None, help="Local HH:MM")
    times_parser.add_argument("--timezone", type=str, default=None)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    setup_logging(level=settings.log_level, json_output=settings.log_json)

    commands = {
        "serve": serve,
        "init-db": init_database,
        "check-config": check_config,
        "eligible": list_eligible,
        "schedule-times": schedule_times,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
