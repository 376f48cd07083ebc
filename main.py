#!/usr/bin/env python3
"""
Markpost -- a pastebin for Markdown.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000]
  python main.py cleanup --dry-run
  python main.py cleanup --preview 10
  python main.py cleanup --batch-size 50
  python main.py create-user alice --password 's3cret-pass'

Configuration comes from the environment and .env (see core/config.py).
Invalid configuration is fatal: the command exits before touching the database.
"""

import argparse
import getpass
import logging
import sys
from datetime import timedelta

from pydantic import ValidationError

from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings, get_settings
from core.database import create_db_engine
from core.errors import ServiceError
from posts.cleanup import DEFAULT_BATCH_SIZE, RetentionSweeper
from posts.store import PostStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _truncate(text: str, max_len: int = 50) -> str:
    return text if len(text) <= max_len else text[:max_len] + "..."


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, log_level="debug" if settings.debug else "info")
    return 0


def cmd_cleanup(settings: Settings, args: argparse.Namespace) -> int:
    """Count, preview, or delete posts older than POST_RETENTION_DAYS."""
    retention_days = settings.post_retention_days
    if retention_days <= 0:
        print(f"  [!] POST_RETENTION_DAYS must be greater than 0, got {retention_days}.")
        return 1
    print(f"  Retention: {retention_days} days")

    engine = create_db_engine(settings.sqlalchemy_url)
    try:
        sweeper = RetentionSweeper(PostStore(engine))

        if args.preview > 0:
            posts = sweeper.preview_expired(retention_days, args.preview)
            if not posts:
                print("  No expired posts found.")
                return 0
            print(f"  Oldest {len(posts)} expired posts:")
            print("  " + "=" * 37)
            for i, post in enumerate(posts, start=1):
                print(f"  {i}. ID: {post.id}")
                print(f"     Title:   {_truncate(post.title)}")
                print(f"     Created: {(post.created_at or '')[:19].replace('T', ' ')}")
                print(f"     User ID: {post.user_id}")
                print("     ---")
            return 0

        if args.dry_run:
            count = sweeper.count_expired(retention_days)
            print(f"  Dry run: {count} posts older than {retention_days} days would be deleted.")
            if count > 0:
                print("  Hint: --preview 10 shows the oldest 10 of them.")
                print("  Hint: drop --dry-run to delete them.")
            return 0

        deleted = sweeper.cleanup_expired(retention_days, args.batch_size)
        print(f"  Cleanup complete: {deleted} posts deleted.")
        return 0
    except ServiceError as exc:
        print(f"  [!] Cleanup failed: {exc.message}")
        return 1
    finally:
        engine.dispose()


def cmd_create_user(settings: Settings, args: argparse.Namespace) -> int:
    """Register a password account and print its post key."""
    password = args.password
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat password: "):
            print("  [!] Passwords do not match.")
            return 1
    if len(password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1

    engine = create_db_engine(settings.sqlalchemy_url)
    try:
        tokens = TokenService(
            settings.secret_key,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
        )
        service = AuthService(UserStore(engine), tokens)
        user = service.register_with_password(args.username, password)
    except ServiceError as exc:
        print(f"  [!] Could not create user: {exc.message}")
        return 1
    finally:
        engine.dispose()

    print(f"  Created user {user.username} (id={user.id})")
    print(f"  Post key: {user.post_key}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markpost",
        description="A pastebin for Markdown.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 8080
  python main.py cleanup --dry-run          # count posts that would be deleted
  python main.py cleanup --preview 10       # show the oldest 10 expired posts
  python main.py cleanup --batch-size 50    # delete 50 rows per batch
  python main.py create-user alice
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.set_defaults(func=cmd_serve)

    cleanup = sub.add_parser("cleanup", help="Delete posts older than POST_RETENTION_DAYS")
    cleanup.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        metavar="N",
        help=f"Rows deleted per batch (default: {DEFAULT_BATCH_SIZE})",
    )
    cleanup.add_argument("--dry-run", action="store_true", help="Only count the posts that would be deleted")
    cleanup.add_argument("--preview", type=int, default=0, metavar="N", help="Show the oldest N expired posts")
    cleanup.set_defaults(func=cmd_cleanup)

    create_user = sub.add_parser("create-user", help="Create a password account and print its post key")
    create_user.add_argument("username")
    create_user.add_argument("--password", default=None, help="Prompted for when omitted")
    create_user.set_defaults(func=cmd_create_user)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"  [!] Invalid configuration:\n{exc}")
        return 2
    return args.func(settings, args)


if __name__ == "__main__":
    sys.exit(main())
