#!/usr/bin/env python3
"""
NetSuite Sync CLI

Setup and day-to-day management of the NetSuite sync.

Usage:
    netsuite-sync setup                 # Interactive setup wizard
    netsuite-sync authorize             # Print the OAuth authorize URL
    netsuite-sync callback --code CODE  # Finish OAuth with the redirect code
    netsuite-sync test                  # Test your connection
    netsuite-sync sync customer         # Pull then push customers
    netsuite-sync status                # Show connection and sync status
    netsuite-sync conflicts             # List records waiting for review
    netsuite-sync mark customer ID      # Queue a local change for the next push
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import structlog
from colorama import Fore, Style, init

from netsuite_sync.config import NetSuiteConfig
from netsuite_sync.engine import SyncEngine, SyncRunResult
from netsuite_sync.errors import NetSuiteSyncError
from netsuite_sync.mappers import MAPPERS, get_mapper
from netsuite_sync.models import SyncStatus
from netsuite_sync.store import JsonFileSyncStore

init()
GREEN = Fore.GREEN
RED = Fore.RED
YELLOW = Fore.YELLOW
BLUE = Fore.CYAN
RESET = Style.RESET_ALL
BOLD = Style.BRIGHT


def print_banner():
    """Print the banner."""
    print(f"""
{BLUE}╔══════════════════════════════════════════════════════════════╗
║     {BOLD}NetSuite Sync{RESET}{BLUE}                                            ║
║     Two-way delta sync with your NetSuite account            ║
╚══════════════════════════════════════════════════════════════╝{RESET}
""")


def print_success(msg: str):
    print(f"{GREEN}✓ {msg}{RESET}")


def print_error(msg: str):
    print(f"{RED}✗ {msg}{RESET}")


def print_warning(msg: str):
    print(f"{YELLOW}⚠ {msg}{RESET}")


def print_info(msg: str):
    print(f"{BLUE}ℹ {msg}{RESET}")


def get_config_path() -> Path:
    """Get the configuration file path."""
    return Path.home() / ".netsuite-sync" / "config.json"


ENV_MAPPINGS = {
    "account_id": "NETSUITE_ACCOUNT_ID",
    "client_id": "NETSUITE_CLIENT_ID",
    "client_secret": "NETSUITE_CLIENT_SECRET",
    "redirect_uri": "NETSUITE_REDIRECT_URI",
    "token_encryption_key": "NETSUITE_TOKEN_ENCRYPTION_KEY",
    "concurrency_limit": "NETSUITE_CONCURRENCY_LIMIT",
    "conflict_strategy": "NETSUITE_CONFLICT_STRATEGY",
    "request_timeout": "NETSUITE_REQUEST_TIMEOUT",
}


def load_config() -> dict:
    """
    Load configuration from file, with environment variable overrides.

    Priority:
    1. Environment variables
    2. Config file values
    """
    config = {}

    config_path = get_config_path()
    if config_path.exists():
        with open(config_path) as f:
            config = json.load(f)

    for config_key, env_var in ENV_MAPPINGS.items():
        env_value = os.environ.get(env_var)
        if env_value:
            config[config_key] = env_value

    return config


def save_config(config: dict) -> None:
    """Save configuration to file."""
    config_path = get_config_path()
    config_path.parent.mkdir(exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(config, f, indent=2)

    # Secure the file (contains client secret and encryption key)
    os.chmod(config_path, 0o600)
    print_success(f"Configuration saved to {config_path}")


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def build_engine(config: dict | None = None) -> SyncEngine | None:
    """Engine over the CLI state file, or None (with a hint) if not configured."""
    if config is None:
        config = load_config()

    try:
        ns_config = NetSuiteConfig.from_mapping(config)
    except NetSuiteSyncError as e:
        print_error(f"Not configured: {e}")
        print_info("Option 1: Run 'netsuite-sync setup' for interactive setup")
        print_info("Option 2: Set environment variables:")
        print("    export NETSUITE_ACCOUNT_ID=1234567_SB1")
        print("    export NETSUITE_CLIENT_ID=...")
        print("    export NETSUITE_CLIENT_SECRET=...")
        print("    export NETSUITE_REDIRECT_URI=https://localhost/callback")
        print("    export NETSUITE_TOKEN_ENCRYPTION_KEY=...")
        return None

    return SyncEngine(ns_config, JsonFileSyncStore())


def _mask(value: str) -> str:
    return f"{value[:4]}...{value[-4:]}" if len(value) > 12 else "(not set)"


def cmd_setup(args):
    """Interactive setup wizard."""
    print_banner()
    print(f"{BOLD}Setup Wizard{RESET}")
    print("Let's configure your NetSuite connection.\n")

    config = load_config()

    current = config.get("account_id", "")
    account_id = input(f"NetSuite account id [{current}]: ").strip() or current
    if not account_id:
        print_error("Account id is required")
        print("  Example: If your URL is https://1234567-sb1.app.netsuite.com")
        print("  Then your account id is: 1234567_SB1")
        return 1

    current = config.get("client_id", "")
    print(f"\nClient ID [{_mask(current)}]")
    print("  Get it from: Setup → Integration → Manage Integrations → New")
    client_id = input("Client ID (leave empty to keep current): ").strip() or current

    current = config.get("client_secret", "")
    print(f"\nClient secret [{_mask(current)}]")
    client_secret = input("Client secret (leave empty to keep current): ").strip() or current

    if not client_id or not client_secret:
        print_error("Client ID and secret are required")
        return 1

    current = config.get("redirect_uri", "")
    redirect_uri = input(f"\nRedirect URI [{current}]: ").strip() or current
    if not redirect_uri:
        print_error("Redirect URI is required")
        return 1

    current = config.get("token_encryption_key", "")
    print(f"\n{BOLD}Security Options{RESET}")
    print_warning("Tokens are encrypted at rest with this key. Losing it means re-authorizing.")
    token_key = input("Token encryption key (leave empty to keep current): ").strip() or current
    if not token_key:
        print_error("Token encryption key is required")
        return 1

    print(f"\n{BOLD}Sync Options{RESET}")
    strategy = config.get("conflict_strategy", "newest_wins")
    strategy = input(
        f"Conflict strategy (newest_wins/remote_wins/local_wins/manual) [{strategy}]: "
    ).strip() or strategy

    config = {
        "account_id": account_id,
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uri": redirect_uri,
        "token_encryption_key": token_key,
        "conflict_strategy": strategy,
    }

    try:
        NetSuiteConfig.from_mapping(config)
    except NetSuiteSyncError as e:
        print_error(str(e))
        return 1

    save_config(config)

    print(f"\n{BOLD}Next step:{RESET} run 'netsuite-sync authorize' to connect your account.")
    return 0


def cmd_authorize(args):
    """Print the URL that starts the OAuth flow."""
    engine = build_engine()
    if engine is None:
        return 1

    with engine:
        url, state = engine.authorize_url()

    print(f"{BOLD}Open this URL in your browser and approve access:{RESET}\n")
    print(f"  {BLUE}{url}{RESET}\n")
    print_info(f"State: {state}")
    print("After approving, copy the 'code' parameter from the redirect and run:")
    print(f"  {BLUE}netsuite-sync callback --code <code>{RESET}")
    return 0


def cmd_callback(args):
    """Exchange the authorization code for tokens."""
    engine = build_engine()
    if engine is None:
        return 1

    try:
        with engine:
            tokens = engine.complete_authorization(args.code)
        print_success("Connected to NetSuite")
        print_info(f"Access token valid for {tokens.expires_in}s (refreshed automatically)")
        return 0

    except NetSuiteSyncError as e:
        print_error(f"Authorization failed: {e}")
        return 1


def cmd_test(args):
    """Test the NetSuite connection."""
    engine = build_engine()
    if engine is None:
        return 1

    print_info(f"Connecting to {engine.config.rest_base_url}...")

    try:
        with engine:
            result = engine.health_check()
            if result["status"] != "healthy":
                print_error(f"Connection failed: {result.get('message', 'Unknown error')}")
                return 1
            count = engine.check_connection()

        print_success("Connected successfully!")
        print_success(f"Customers visible: {count}")
        return 0

    except Exception as e:
        print_error(f"Connection failed: {e}")
        return 1


def _print_run(result: SyncRunResult) -> None:
    if result.pull:
        pull = result.pull
        print(f"  Pull:  {pull.pulled} pulled, {pull.created} created, "
              f"{pull.updated} updated, {pull.conflicts} conflicts ({result.duration_ms}ms)")
        for err in pull.errors[:5]:
            print(f"    - {err['remote_id']}: {err['error']}")
    if result.push:
        push = result.push
        print(f"  Push:  {push.pushed} pushed, {push.failed} failed ({result.duration_ms}ms)")
        for err in push.errors[:5]:
            print(f"    - {err['local_id']}: {err['error']}")


def cmd_sync(args):
    """Run a delta sync for one entity."""
    engine = build_engine()
    if engine is None:
        return 1

    mapper = get_mapper(args.entity)
    upsert_local, get_local = engine.store.local_callbacks(mapper.local_table)

    print_banner()
    print(f"{BOLD}Syncing {args.entity} ({args.direction}){RESET}\n")

    try:
        with engine:
            if args.direction in ("pull", "both"):
                _print_run(engine.pull(mapper, upsert_local))
            if args.direction in ("push", "both"):
                _print_run(engine.push(mapper, get_local))

        print(f"\n{GREEN}Sync complete!{RESET}")

        conflicts = engine.get_conflicts()
        if conflicts:
            print_warning(f"{len(conflicts)} record(s) need review: run 'netsuite-sync conflicts'")
        return 0

    except Exception as e:
        print_error(f"Sync failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def cmd_status(args):
    """Show connection status and recent runs."""
    engine = build_engine()
    if engine is None:
        return 1

    print_banner()

    with engine:
        status = engine.connection_status()
        stats = engine.get_stats()
        history = engine.get_sync_history(10)

    print(f"{BOLD}Connection{RESET}\n")
    print(f"  Account: {status['account_id']}")
    if status["connected"]:
        print_success("  Connected")
    else:
        print_warning("  Not connected: run 'netsuite-sync authorize'")

    print(f"\n{BOLD}Records{RESET}\n")
    for name, count in stats["sync_status"].items():
        color = RED if name in (SyncStatus.ERROR.value, SyncStatus.CONFLICT.value) and count else ""
        print(f"  {name:<14} {color}{count}{RESET}")

    print(f"\n{BOLD}Recent Runs{RESET}\n")
    if not history:
        print_warning("  No sync runs yet")
    for run in history:
        color = GREEN if run.status.value == "completed" else RED if run.status.value == "failed" else YELLOW
        print(f"  {run.started_at[:19]}  {run.entity_type:<12} {run.direction.value:<5} "
              f"{color}{run.status.value:<10}{RESET} processed={run.records_processed} "
              f"failed={run.records_failed}")
        if run.error_summary and run.status.value == "failed":
            print(f"    {RED}{run.error_summary.splitlines()[0]}{RESET}")

    return 0


def cmd_conflicts(args):
    """List records flagged for manual review."""
    engine = build_engine()
    if engine is None:
        return 1

    with engine:
        conflicts = engine.get_conflicts()

    if not conflicts:
        print_success("No conflicts")
        return 0

    print(f"{BOLD}{len(conflicts)} conflict(s){RESET}\n")
    for meta in conflicts:
        payload = meta.conflict_payload or {}
        print(f"  {BOLD}{meta.id}{RESET}")
        print(f"    {meta.local_table}/{meta.local_record_id} ↔ {meta.remote_record_type}/{meta.remote_id}")
        print(f"    Reason: {payload.get('reason', 'unknown')}")
        print(f"    Local modified:  {meta.last_modified_local}")
        print(f"    Remote modified: {meta.last_modified_remote}")
    print()
    print_info("Resolve with: netsuite-sync resolve <id> use_local|use_remote")
    return 0


def cmd_resolve(args):
    """Resolve one conflict."""
    engine = build_engine()
    if engine is None:
        return 1

    try:
        with engine:
            meta = engine.store.get_metadata(args.meta_id)
            upsert_local = None
            if meta is not None:
                upsert_local, _ = engine.store.local_callbacks(meta.local_table)
            engine.resolve_conflict(args.meta_id, args.resolution, upsert_local)

        print_success(f"Resolved {args.meta_id} with {args.resolution}")
        return 0

    except (NetSuiteSyncError, ValueError) as e:
        print_error(str(e))
        return 1


def cmd_requeue(args):
    """Queue a failed record for the next push."""
    engine = build_engine()
    if engine is None:
        return 1

    try:
        with engine:
            engine.requeue(args.meta_id)
        print_success(f"Requeued {args.meta_id}")
        return 0

    except NetSuiteSyncError as e:
        print_error(str(e))
        return 1


def cmd_mark(args):
    """Flag a locally changed record for the next push."""
    engine = build_engine()
    if engine is None:
        return 1

    mapper = get_mapper(args.entity)
    try:
        with engine:
            meta = engine.mark_pending_push(mapper, args.local_id)
    except NetSuiteSyncError as e:
        print_error(str(e))
        return 1

    if meta.sync_status == SyncStatus.CONFLICT:
        print_warning(f"{args.local_id} is in conflict; resolve {meta.id} before it can be pushed")
    else:
        print_success(f"Marked {args.entity} {args.local_id} for push")
    return 0


def cmd_disconnect(args):
    """Delete stored tokens."""
    engine = build_engine()
    if engine is None:
        return 1

    with engine:
        engine.disconnect()
    print_success("Disconnected. Stored tokens removed.")
    return 0


def main(argv: list[str] | None = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="NetSuite Sync CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  netsuite-sync setup                    Interactive setup wizard
  netsuite-sync authorize                Start OAuth
  netsuite-sync callback --code abc123   Finish OAuth
  netsuite-sync sync customer            Pull then push customers
  netsuite-sync sync invoice --direction pull
  netsuite-sync resolve <id> use_remote  Accept NetSuite's version
  netsuite-sync mark customer local-42  Push a local edit on the next sync
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("setup", help="Interactive setup wizard")
    subparsers.add_parser("authorize", help="Print the OAuth authorize URL")

    callback_parser = subparsers.add_parser("callback", help="Finish OAuth with the redirect code")
    callback_parser.add_argument("--code", required=True, help="Authorization code from the redirect")

    subparsers.add_parser("test", help="Test your connection")

    sync_parser = subparsers.add_parser("sync", help="Run a delta sync")
    sync_parser.add_argument("entity", choices=sorted(MAPPERS), help="Entity to sync")
    sync_parser.add_argument(
        "--direction",
        choices=("pull", "push", "both"),
        default="both",
        help="Sync direction (default: both)",
    )

    subparsers.add_parser("status", help="Show connection and sync status")
    subparsers.add_parser("conflicts", help="List conflicts")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a conflict")
    resolve_parser.add_argument("meta_id", help="Sync metadata id (see 'conflicts')")
    resolve_parser.add_argument("resolution", choices=("use_local", "use_remote"))

    requeue_parser = subparsers.add_parser("requeue", help="Retry a record stuck in error")
    requeue_parser.add_argument("meta_id", help="Sync metadata id")

    mark_parser = subparsers.add_parser("mark", help="Queue a local change for the next push")
    mark_parser.add_argument("entity", choices=sorted(MAPPERS), help="Entity type")
    mark_parser.add_argument("local_id", help="Local record id")

    subparsers.add_parser("disconnect", help="Remove stored tokens")

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.command is None:
        print_banner()
        print(f"{BOLD}Quick Start:{RESET}")
        print()
        print("  1. Configure your integration:")
        print(f"     {BLUE}netsuite-sync setup{RESET}")
        print()
        print("  2. Connect your account:")
        print(f"     {BLUE}netsuite-sync authorize{RESET}")
        print()
        print("  3. Run a sync:")
        print(f"     {BLUE}netsuite-sync sync customer{RESET}")
        print()
        parser.print_help()
        return 0

    commands = {
        "setup": cmd_setup,
        "authorize": cmd_authorize,
        "callback": cmd_callback,
        "test": cmd_test,
        "sync": cmd_sync,
        "status": cmd_status,
        "conflicts": cmd_conflicts,
        "resolve": cmd_resolve,
        "requeue": cmd_requeue,
        "mark": cmd_mark,
        "disconnect": cmd_disconnect,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
