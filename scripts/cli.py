"""Minimal CLI entry point for running the Mail Tasker pipeline by hand."""

from __future__ import annotations

import argparse
import logging
import sys
import uuid

from mail_tasker.config.settings import MailTaskerSettings
from mail_tasker.core.auth import GoogleTokenRefresher, authorize_account
from mail_tasker.core.gmail_client import GmailClient
from mail_tasker.core.models import AccountCredential, EventKind, ProgressEvent
from mail_tasker.pipeline.orchestrator import TaskExtractionPipeline
from mail_tasker.pipeline.progress import JsonLinesSink
from mail_tasker.storage.credentials import CredentialStore
from mail_tasker.storage.tracker import TaskStore


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(event: ProgressEvent) -> None:
    """Print progress updates to stdout."""
    if event.kind == EventKind.ERROR:
        print(f"\n[error] {event.error}", flush=True)
    elif event.kind in (EventKind.TASK_CREATED, EventKind.COMPLETE):
        print(f"\n[{event.kind}] {event.message}", flush=True)
    else:
        print(f"[{event.kind}] {event.message}", end="\r", flush=True)


def _add_account_arg(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("--account", "-a", required=True, help="Linked account ID")


def _add_user_arg(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("--user", "-u", default="default", help="Owning user ID")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mail Tasker - Extract tasks from Gmail with a local LLM"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    link_parser = subparsers.add_parser("link-account", help="Link a Gmail account via OAuth")
    _add_user_arg(link_parser)
    link_parser.add_argument("--name", default="", help="Display name for the account")

    accounts_parser = subparsers.add_parser("accounts", help="List linked accounts")
    _add_user_arg(accounts_parser)

    inbox_parser = subparsers.add_parser("inbox", help="Newest messages across all accounts")
    _add_user_arg(inbox_parser)
    inbox_parser.add_argument("--max-results", type=int, default=10, dest="max_results")
    inbox_parser.add_argument("--query", "-q", help="Gmail search query")

    extract_parser = subparsers.add_parser("extract", help="Extract tasks from one account")
    _add_account_arg(extract_parser)
    extract_parser.add_argument("--json", action="store_true", help="Stream events as JSON lines")

    extract_all_parser = subparsers.add_parser(
        "extract-all", help="Extract tasks from every active account of a user"
    )
    _add_user_arg(extract_all_parser)
    extract_all_parser.add_argument(
        "--json", action="store_true", help="Stream events as JSON lines"
    )

    pending_parser = subparsers.add_parser("pending", help="Count unprocessed messages")
    _add_account_arg(pending_parser)

    status_parser = subparsers.add_parser("status", help="Ledger counts by status")
    _add_account_arg(status_parser)

    reset_parser = subparsers.add_parser("reset", help="Clear the processed-message ledger")
    _add_account_arg(reset_parser)
    reset_parser.add_argument(
        "--failed-only",
        action="store_true",
        dest="failed_only",
        help="Only clear messages whose batch failed",
    )

    tasks_parser = subparsers.add_parser("tasks", help="List extracted tasks")
    _add_user_arg(tasks_parser)
    tasks_parser.add_argument("--account", "-a", help="Only tasks from this account")

    return parser


def _validate_args(args: argparse.Namespace) -> None:
    """Reject non-positive result counts."""
    if getattr(args, "max_results", None) is not None and args.max_results <= 0:
        print("Error: --max-results must be positive", file=sys.stderr)
        sys.exit(1)


def link_account(settings: MailTaskerSettings, user_id: str, name: str) -> AccountCredential:
    """Authorize a Gmail account and store its tokens."""
    creds = authorize_account(settings.client_secrets_path)
    draft = AccountCredential(
        account_id=uuid.uuid4().hex,
        user_id=user_id,
        email="",
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        display_name=name,
    )
    client = GmailClient(
        draft,
        token_refresher=GoogleTokenRefresher(
            creds.client_id or settings.client_id,
            creds.client_secret or settings.client_secret,
            settings.token_uri,
        ),
    )
    profile = client.get_profile()
    email = profile.get("emailAddress", "")

    with CredentialStore(settings.database_path) as store:
        return store.add_account(
            AccountCredential(
                account_id=draft.account_id,
                user_id=user_id,
                email=email,
                access_token=client.credential.access_token,
                refresh_token=client.credential.refresh_token,
                display_name=name or email,
            )
        )


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    _validate_args(args)

    settings = MailTaskerSettings()
    setup_logging(settings.log_level)

    if args.command == "link-account":
        try:
            account = link_account(settings, args.user, args.name)
        except Exception as e:
            print(f"\nError: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Linked {account.email} as account {account.account_id}")
        return

    pipeline = TaskExtractionPipeline(settings=settings)
    sink = JsonLinesSink(sys.stdout) if getattr(args, "json", False) else on_progress

    try:
        if args.command == "accounts":
            with CredentialStore(settings.database_path) as store:
                accounts = store.list_accounts(args.user)
            print(f"\nFound {len(accounts)} accounts:\n")
            for acct in accounts:
                state = "active" if acct.is_active else "inactive"
                print(f"  {acct.account_id:34s} {acct.email:40s} {state}")

        elif args.command == "inbox":
            result = pipeline.recent_messages(args.user, args.max_results, args.query)
            for tagged in result.messages:
                msg = tagged.message
                print(
                    f"  {msg.received_at:%Y-%m-%d %H:%M}  {tagged.account_email:30s}  "
                    f"{msg.sender[:30]:30s}  {msg.subject}"
                )
            for error in result.errors:
                print(f"  ! {error.account_email}: {error.error}", file=sys.stderr)

        elif args.command == "extract":
            summary = pipeline.run(args.account, on_progress=sink)
            if not args.json:
                print(f"\n\nComplete: {summary}")

        elif args.command == "extract-all":
            outcomes = pipeline.run_all(args.user, on_progress=sink)
            if not args.json:
                print()
                for account_id, outcome in outcomes.items():
                    print(f"  {account_id}: {outcome}")

        elif args.command == "pending":
            count = pipeline.count_unprocessed(args.account)
            print(f"\n{count} unprocessed messages")

        elif args.command == "status":
            counts = pipeline.status(args.account)
            print("\nProcessed messages by status:")
            for status, count in sorted(counts.items()):
                print(f"  {status}: {count}")

        elif args.command == "reset":
            count = pipeline.reset(args.account, failed_only=args.failed_only)
            print(f"\nCleared {count} processed-message entries")

        elif args.command == "tasks":
            with TaskStore(settings.database_path) as store:
                tasks = store.list_tasks(args.user, args.account)
            for task in tasks:
                due = f" (due {task.due_date})" if task.due_date else ""
                print(f"  [{task.priority}] {task.title}{due}  <{task.email_sender}>")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        pipeline.close()


if __name__ == "__main__":
    main()
