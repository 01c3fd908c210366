import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.repos import SQLiteRedirectStore
from src.components.redirects import (
    AddRedirectInput,
    ListHostsInput,
    ListRedirectsInput,
    LookupRedirectInput,
    RedirectErrorDetail,
    RedirectView,
    RemoveRedirectInput,
    run_add,
    run_hosts,
    run_list,
    run_lookup,
    run_remove,
)
from src.rules.loader import load_rules
from src.rules.models import Rules

logger = logging.getLogger("cli")

RULES_PATH = "rules.yaml"


def get_rules(path: Path) -> Rules:
    if not path.exists():
        logger.error("Rules file %s not found.", path)
        sys.exit(1)
    return load_rules(path)


def resolve_db_path(rules: Rules, override: str | None) -> str:
    if override:
        return override
    data_dir = os.environ.get("REDIRECTS_DATA_DIR")
    if data_dir:
        return str(Path(data_dir) / "redirects.db")
    return rules.storage.db_path


def format_redirect(redirect: RedirectView) -> str:
    host = redirect.host or "*"
    return (
        f"{host}\t/{redirect.source_uri_path} -> {redirect.target_uri_path}"
        f"\t[{redirect.status_code}]\thits={redirect.hit_counter}"
    )


def print_errors(errors: list[RedirectErrorDetail]) -> None:
    for err in errors:
        suffix = f" ({err.field})" if err.field else ""
        print(f"Error [{err.code}]: {err.message}{suffix}", file=sys.stderr)


def parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid ISO datetime: {value}") from e


def handle_migrate(rules: Rules, db_path: str) -> int:
    applied = SQLiteMigrator(db_path, rules.storage.migrations_dir).run_migrations()
    print(f"Applied {len(applied)} migration(s) to {db_path}.")
    return 0


def handle_add(store: SQLiteRedirectStore, rules: Rules, args: argparse.Namespace) -> int:
    out = run_add(
        AddRedirectInput(
            source_uri_path=args.source,
            target_uri_path=args.target,
            status_code=args.status,
            hosts=frozenset(args.host or ()),
            creator=args.creator,
            comment=args.comment,
            type=args.type,
            start_date_time=args.start,
            end_date_time=args.end,
        ),
        store=store,
        rules=rules.redirects,
    )
    if not out.success:
        print_errors(out.errors)
        return 1

    print(f"Saved {len(out.redirects)} redirect(s):")
    for redirect in out.redirects:
        print(f"  {format_redirect(redirect)}")
    return 0


def handle_remove(store: SQLiteRedirectStore, rules: Rules, args: argparse.Namespace) -> int:
    out = run_remove(
        RemoveRedirectInput(source_uri_path=args.source, host=args.host),
        store=store,
        rules=rules.redirects,
    )
    if not out.success:
        print_errors(out.errors)
        return 1
    print(f"Removed redirect for /{args.source}.")
    return 0


def handle_purge(store: SQLiteRedirectStore, rules: Rules, args: argparse.Namespace) -> int:
    if args.all:
        inp = RemoveRedirectInput(all_hosts=True)
    else:
        inp = RemoveRedirectInput(host=args.host, by_host=True)

    out = run_remove(inp, store=store, rules=rules.redirects)
    print(f"Removed {out.removed} redirect(s).")
    return 0


def handle_list(store: SQLiteRedirectStore, rules: Rules, args: argparse.Namespace) -> int:
    out = run_list(
        ListRedirectsInput(
            host=args.host,
            only_active=args.active,
            type=args.type,
            without_host=args.without_host,
        ),
        store=store,
        rules=rules.redirects,
    )
    for redirect in out.redirects:
        print(format_redirect(redirect))
    print(f"{len(out.redirects)} redirect(s).")
    return 0


def handle_hosts(store: SQLiteRedirectStore, rules: Rules) -> int:
    out = run_hosts(ListHostsInput(), store=store, rules=rules.redirects)
    for host in out.hosts:
        print(host)
    return 0


def handle_lookup(store: SQLiteRedirectStore, rules: Rules, args: argparse.Namespace) -> int:
    out = run_lookup(
        LookupRedirectInput(
            source_uri_path=args.source, host=args.host, fallback=not args.no_fallback
        ),
        store=store,
        rules=rules.redirects,
    )
    if out.redirect is None:
        print_errors(out.errors)
        return 1
    print(format_redirect(out.redirect))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Redirect Store CLI")
    parser.add_argument(
        "--rules",
        default=os.environ.get("REDIRECTS_RULES_PATH", RULES_PATH),
        help="Path to rules.yaml",
    )
    parser.add_argument("--db", help="SQLite database path (overrides rules)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # migrate
    subparsers.add_parser("migrate", help="Apply pending schema migrations")

    # add
    add_parser = subparsers.add_parser("add", help="Add a redirect and repair chains")
    add_parser.add_argument("source", help="Source path")
    add_parser.add_argument("target", help="Target path or absolute URL")
    add_parser.add_argument("--status", type=int, help="HTTP status code (default from rules)")
    add_parser.add_argument(
        "--host", action="append", help="Host to scope the rule to (repeatable)"
    )
    add_parser.add_argument("--creator", help="Who created the rule")
    add_parser.add_argument("--comment", help="Free text comment")
    add_parser.add_argument("--type", choices=["generated", "manual"], default="manual")
    add_parser.add_argument("--start", type=parse_datetime, help="Active from (ISO datetime)")
    add_parser.add_argument("--end", type=parse_datetime, help="Active until (ISO datetime)")

    # remove
    remove_parser = subparsers.add_parser("remove", help="Remove one redirect")
    remove_parser.add_argument("source", help="Source path")
    remove_parser.add_argument(
        "--host", help="Request host (falls back to the host-less rule)"
    )

    # purge
    purge_parser = subparsers.add_parser("purge", help="Remove redirects in bulk")
    purge_group = purge_parser.add_mutually_exclusive_group()
    purge_group.add_argument("--all", action="store_true", help="Remove every redirect")
    purge_group.add_argument("--host", help="Remove every redirect of this host")

    # list
    list_parser = subparsers.add_parser("list", help="List redirects")
    list_group = list_parser.add_mutually_exclusive_group()
    list_group.add_argument("--host", help="Only this host")
    list_group.add_argument(
        "--without-host", action="store_true", help="Only rules without a host"
    )
    list_parser.add_argument("--active", action="store_true", help="Only currently active")
    list_parser.add_argument("--type", choices=["generated", "manual"])

    # hosts
    subparsers.add_parser("hosts", help="List hosts with host-specific redirects")

    # lookup
    lookup_parser = subparsers.add_parser("lookup", help="Resolve a source path")
    lookup_parser.add_argument("source", help="Source path")
    lookup_parser.add_argument("--host", help="Request host")
    lookup_parser.add_argument(
        "--no-fallback", action="store_true", help="Do not fall back to host-less rules"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO)

    args = build_parser().parse_args(argv)
    rules = get_rules(Path(args.rules))
    db_path = resolve_db_path(rules, args.db)

    if args.command == "migrate":
        return handle_migrate(rules, db_path)

    store = SQLiteRedirectStore(db_path)

    if args.command == "add":
        return handle_add(store, rules, args)
    elif args.command == "remove":
        return handle_remove(store, rules, args)
    elif args.command == "purge":
        return handle_purge(store, rules, args)
    elif args.command == "list":
        return handle_list(store, rules, args)
    elif args.command == "hosts":
        return handle_hosts(store, rules)
    elif args.command == "lookup":
        return handle_lookup(store, rules, args)
    return 1


if __name__ == "__main__":
    sys.exit(main())
