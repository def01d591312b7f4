"""
Command-line interface for ajournal.

Commands:
    sync              Pull activity from the enabled integrations
    generate          Write daily journals from synced data
    run               sync + generate in one go
    config            Show, reset or change settings
    status            Last sync per integration and recent journals
    weekly-report     Summarize a week of journals
    monthly-report    Summarize a month of journals
    quarterly-report  Summarize a quarter of journals
    migrate           Move legacy flat journals into the dated folders
    setup             Print setup steps; --google runs the Calendar OAuth flow
    serve             Start the web UI

Run with: ajournal <command> (or python -m ajournal <command>)
"""

import argparse
import json
import sys
from datetime import date, datetime

import uvicorn
import yaml  # PyYAML, for parsing --set values
from dotenv import load_dotenv

from . import google_auth
from .config import Config
from .errors import AJournalError
from .log import setup_logging
from .reports import ReportGenerator
from .storage import Storage
from .sync import INTEGRATIONS, dates_back, generate_journals, run_all, run_sync
from .web import create_app


def build_parser() -> argparse.ArgumentParser:
    """
    Define the command-line interface.

    Syntax notes:
    - add_subparsers() gives us git-style commands (ajournal sync, ajournal run)
    - dest="command" stores which one was chosen in args.command
    - Each subparser gets its own options, so --days on sync doesn't leak
      into config
    """
    parser = argparse.ArgumentParser(
        prog="ajournal",
        description="Automated work journal generator with AI integration.",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    sync_parser = subparsers.add_parser("sync", help="Sync data from all configured integrations.")
    sync_parser.add_argument("-d", "--days", type=int, help="Number of days to sync (default: from config).")
    sync_parser.add_argument("-i", "--integration", choices=list(INTEGRATIONS), help="Sync only one integration.")

    generate_parser = subparsers.add_parser("generate", help="Generate journal entries using AI.")
    generate_group = generate_parser.add_mutually_exclusive_group()
    generate_group.add_argument("-d", "--date", help="Generate for a specific date (YYYY-MM-DD).")
    generate_group.add_argument("-r", "--range", type=int, help="Generate for the last N days.")

    config_parser = subparsers.add_parser("config", help="Manage configuration.")
    config_parser.add_argument("-s", "--show", action="store_true", help="Show current configuration.")
    config_parser.add_argument("-r", "--reset", action="store_true", help="Reset to default configuration.")
    config_parser.add_argument("--set", metavar="KEY=VALUE", help="Set a configuration value (dotted key).")

    subparsers.add_parser("status", help="Show sync status and recent journals.")

    run_parser = subparsers.add_parser("run", help="Sync data and generate journal entries in one command.")
    run_parser.add_argument("-d", "--days", type=int, help="Number of days to process (default: from config).")
    run_parser.add_argument("-i", "--integration", choices=list(INTEGRATIONS), help="Sync only one integration.")

    weekly_parser = subparsers.add_parser("weekly-report", help="Generate a weekly report from existing journals.")
    weekly_parser.add_argument("-d", "--date", help="Start date for the week (YYYY-MM-DD, default: 6 days ago).")
    weekly_parser.add_argument("-n", "--name", help="Custom name for the report file.")

    monthly_parser = subparsers.add_parser("monthly-report", help="Generate a monthly report from existing journals.")
    monthly_parser.add_argument("-m", "--month", help="Month to report on (YYYY-MM, default: current month).")
    monthly_parser.add_argument("-n", "--name", help="Custom name for the report file.")

    quarterly_parser = subparsers.add_parser("quarterly-report", help="Generate a quarterly report from existing journals.")
    quarterly_parser.add_argument("-q", "--quarter", help="Quarter to report on (YYYY-Q1..Q4, default: current quarter).")
    quarterly_parser.add_argument("-n", "--name", help="Custom name for the report file.")

    subparsers.add_parser("migrate", help="Migrate existing journals to the new folder structure.")

    setup_parser = subparsers.add_parser("setup", help="Setup instructions.")
    setup_parser.add_argument("--google", action="store_true", help="Authorize Google Calendar access in the browser.")

    serve_parser = subparsers.add_parser("serve", help="Start the web UI.")
    serve_parser.add_argument("--host", help="Interface to bind (default: from config).")
    serve_parser.add_argument("--port", type=int, help="Port to listen on (default: from config).")

    return parser


def parse_config_value(raw: str):
    """
    Interpret a --set value the way it would read in config.yaml.

    Examples:
        parse_config_value("3")        # 3
        parse_config_value("true")     # True
        parse_config_value("[a, b]")   # ["a", "b"]
        parse_config_value("hello")    # "hello"
    """
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_sync(args, config: Config, storage: Storage) -> int:
    print("Starting sync process...")
    if not args.integration or args.integration == "gcal":
        if not google_auth.validate_before_run(config, storage):
            print("Google Calendar token validation failed. Run: ajournal setup --google")
            return 1

    result = run_sync(config, storage, days=args.days, integration=args.integration)
    for message in result.messages:
        print(f"  {message}")
    print(f"Sync completed: {result.total} activities.")
    return 0


def cmd_generate(args, config: Config, storage: Storage) -> int:
    if args.date:
        try:
            targets = [date.fromisoformat(args.date)]
        except ValueError:
            print(f"Invalid date: {args.date}. Use YYYY-MM-DD.")
            return 1
    else:
        targets = dates_back(args.range or 1, datetime.now(storage.tz).date())

    print("Generating journal entries...")
    paths = generate_journals(config, storage, targets)
    for path in paths:
        print(f"  Journal saved to: {path}")
    if not paths:
        print("No activities found for the requested dates. Run sync first.")
    return 0


def cmd_run(args, config: Config, storage: Storage) -> int:
    print("Running sync and generate...")
    if not args.integration or args.integration == "gcal":
        if not google_auth.validate_before_run(config, storage):
            print("Token validation failed. Run: ajournal setup --google")
            return 1

    result, paths = run_all(config, storage, days=args.days, integration=args.integration)
    for message in result.messages:
        print(f"  {message}")
    for path in paths:
        print(f"  Journal saved to: {path}")
    print("Complete! Sync and journal generation finished.")
    return 0


def cmd_config(args, config: Config, storage: Storage) -> int:
    if args.show:
        print("Current Configuration:")
        print(json.dumps(config.as_dict(resolve=False), indent=2))
        return 0

    if args.reset:
        config.reset()
        print("Configuration reset to defaults")
        return 0

    if args.set:
        key, sep, raw_value = args.set.partition("=")
        if not key or not sep:
            print("Invalid format. Use: --set key=value")
            return 1
        value = parse_config_value(raw_value)
        config.set(key.strip(), value)
        config.save()
        print(f"Set {key.strip()} = {json.dumps(value)}")
        return 0

    print("Use --show, --reset, or --set key=value")
    return 0


def cmd_status(args, config: Config, storage: Storage) -> int:
    print("AJournal Status")
    print("=" * 18)

    print("Sync Status:")
    sync_state = storage.get_sync_state()
    if not sync_state:
        print("  No sync data available")
    for integration, state in sync_state.items():
        print(f"  {integration}: {state.get('lastSync', 'Never')}")

    print("\nRecent Journals:")
    for journal in storage.list_journals()[:5]:
        print(f"  {journal}")
    return 0


def cmd_weekly_report(args, config: Config, storage: Storage) -> int:
    start = None
    if args.date:
        try:
            start = date.fromisoformat(args.date)
        except ValueError:
            print(f"Invalid date: {args.date}. Use YYYY-MM-DD.")
            return 1

    print("Generating weekly report...")
    path = ReportGenerator(config, storage).weekly_report(start, args.name)
    if path is None:
        print("No journals found for the specified week. Run sync and generate first.")
        return 0
    print(f"Weekly report saved to: {path}")
    return 0


def cmd_monthly_report(args, config: Config, storage: Storage) -> int:
    print("Generating monthly report...")
    path = ReportGenerator(config, storage).monthly_report(args.month, args.name)
    if path is None:
        print("No journals found for the specified month. Run sync and generate first.")
        return 0
    print(f"Monthly report saved to: {path}")
    return 0


def cmd_quarterly_report(args, config: Config, storage: Storage) -> int:
    print("Generating quarterly report...")
    path = ReportGenerator(config, storage).quarterly_report(args.quarter, args.name)
    if path is None:
        print("No journals found for the specified quarter. Run sync and generate first.")
        return 0
    print(f"Quarterly report saved to: {path}")
    return 0


def cmd_migrate(args, config: Config, storage: Storage) -> int:
    print("Starting journal migration...")
    migrated = storage.migrate_existing_journals()
    if migrated:
        print(f"Migrated {migrated} files to the new folder structure:")
        print("  <output_dir>/daily/YYYY/week-NN/YYYY-MM-DD.md")
        print("  <output_dir>/reports/weekly/YYYY/weekly-report-YYYY-MM-DD.md")
    else:
        print("No files needed migration.")
    return 0


def cmd_setup(args, config: Config, storage: Storage) -> int:
    if args.google:
        google_auth.run_oauth_flow(config, storage)
        return 0

    print("AJournal Setup")
    print("=" * 14)
    print("Please ensure you have:")
    print("1. Created a .env file with your API keys (SLACK_USER_TOKEN, GITHUB_TOKEN, ...)")
    print(f"2. Configured integrations in {config.path}")
    print("3. Authorized Google Calendar with: ajournal setup --google")
    print()
    print('Run "ajournal run" to sync data and generate journals')
    print('Run "ajournal migrate" to move existing journals to the new folder structure')
    print('Run "ajournal weekly-report" to create weekly summaries')
    print('Run "ajournal monthly-report" to create monthly summaries')
    print('Run "ajournal quarterly-report" to create quarterly summaries')
    return 0


def cmd_serve(args, config: Config, storage: Storage) -> int:
    host = args.host or config.get("web.host", "127.0.0.1")
    port = args.port or config.get("web.port", 3000)
    print(f"AJournal web UI running at http://{host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port)
    return 0


COMMANDS = {
    "sync": cmd_sync,
    "generate": cmd_generate,
    "run": cmd_run,
    "config": cmd_config,
    "status": cmd_status,
    "weekly-report": cmd_weekly_report,
    "monthly-report": cmd_monthly_report,
    "quarterly-report": cmd_quarterly_report,
    "migrate": cmd_migrate,
    "setup": cmd_setup,
    "serve": cmd_serve,
}


def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the ajournal command.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    # .env in the working directory fills in tokens not already exported
    load_dotenv()
    config = Config.load()
    setup_logging(config.get("logging.level", "INFO"), config.get("logging.file"))

    storage = Storage(config)
    try:
        return COMMANDS[args.command](args, config, storage)
    except AJournalError as e:
        print(f"Error: {e}")
        if getattr(e, "auth_url", None):
            print(f"Re-authorize at: {e.auth_url}")
        return 1
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    except Exception as e:
        # API failures during setup (bad token, network down, ...)
        print(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
