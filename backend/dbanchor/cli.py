"""
Operator commands. Each prints one JSON object on stdout; exit status 0 on
success, 1 on a fatal error (human-readable cause on stderr).

    dbanchor check-connection
    dbanchor run-migrations [--migrations-dir DIR]
    dbanchor migration-status [--migrations-dir DIR]
    dbanchor seed
    dbanchor verify-schema [--strict]
    dbanchor bootstrap
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dbanchor.bootstrap import bootstrap
from dbanchor.core.config import settings
from dbanchor.core.exceptions import DbAnchorError, MigrationFailure, NoBackendAvailable
from dbanchor.core.migrations import MigrationRunner, load_scripts, scripts_for
from dbanchor.core.selector import BackendHandle, BackendSelector
from dbanchor.core.verify import SchemaVerifier
from dbanchor.initial_data import SCHEMA_EXPECTATIONS, seed_reference_data
from dbanchor.models import MigrationScript

logger = logging.getLogger(__name__)


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, default=str))


def _scripts(
    selector: BackendSelector, args: argparse.Namespace
) -> tuple[BackendHandle, list[MigrationScript]]:
    handle = selector.resolve()
    if args.migrations_dir:
        return handle, load_scripts(Path(args.migrations_dir))
    return handle, scripts_for(handle.dialect, settings.MIGRATIONS_DIR)


def _cmd_check_connection(selector: BackendSelector, _args: argparse.Namespace) -> int:
    probes = selector.check_all()
    healthy = [p for p in probes if p.healthy]
    _emit(
        {
            "command": "check-connection",
            "ok": bool(healthy),
            "selected": healthy[0].name if healthy else None,
            "backends": [p.model_dump(mode="json") for p in probes],
        }
    )
    if not healthy:
        print("dbanchor check-connection: no backend is healthy", file=sys.stderr)
        return 1
    return 0


def _cmd_run_migrations(selector: BackendSelector, args: argparse.Namespace) -> int:
    handle, scripts = _scripts(selector, args)
    report = MigrationRunner(handle, lock_timeout=settings.DB_MIGRATION_LOCK_TIMEOUT).apply(scripts)
    _emit(
        {
            "command": "run-migrations",
            "ok": True,
            "backend": handle.descriptor.name,
            **report.summary(),
        }
    )
    return 0


def _cmd_migration_status(selector: BackendSelector, args: argparse.Namespace) -> int:
    handle, scripts = _scripts(selector, args)
    status = MigrationRunner(handle).status(scripts)
    _emit(
        {
            "command": "migration-status",
            "ok": True,
            "backend": handle.descriptor.name,
            **status.model_dump(),
        }
    )
    return 0


def _cmd_seed(selector: BackendSelector, _args: argparse.Namespace) -> int:
    handle = selector.resolve()
    reports = seed_reference_data(handle)
    _emit(
        {
            "command": "seed",
            "ok": True,
            "backend": handle.descriptor.name,
            "inserted": sum(r.inserted for r in reports),
            "already_present": sum(r.already_present for r in reports),
            "tables": {
                r.table: {
                    "inserted": r.inserted,
                    "already_present": r.already_present,
                    "expected": r.expected,
                    "found": r.found,
                }
                for r in reports
            },
        }
    )
    return 0


def _cmd_verify_schema(selector: BackendSelector, args: argparse.Namespace) -> int:
    handle = selector.resolve()
    report = SchemaVerifier(handle).verify(SCHEMA_EXPECTATIONS)
    _emit(
        {
            "command": "verify-schema",
            "ok": report.all_ok,
            "backend": handle.descriptor.name,
            "tables": report.tables,
        }
    )
    if args.strict and not report.all_ok:
        print(
            f"dbanchor verify-schema: missing tables: {', '.join(report.missing)}",
            file=sys.stderr,
        )
        return 1
    return 0


def _cmd_bootstrap(selector: BackendSelector, _args: argparse.Namespace) -> int:
    result = bootstrap(selector, settings)
    _emit({"command": "bootstrap", "ok": True, **result.summary()})
    return 0


def _failure_payload(command: str, exc: Exception) -> dict[str, Any]:
    payload: dict[str, Any] = {"command": command, "ok": False}
    if isinstance(exc, MigrationFailure) and exc.report is not None:
        payload.update(exc.report.summary())
    if isinstance(exc, NoBackendAvailable):
        payload["backends"] = [p.model_dump(mode="json") for p in exc.probes]
    payload["error"] = type(exc).__name__
    payload["cause"] = str(exc)
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbanchor",
        description="Backend resolution, migrations, seeding and schema checks",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check-connection", help="Probe every configured backend and report health per backend.")
    check.set_defaults(func=_cmd_check_connection)

    migrate = sub.add_parser("run-migrations", help="Apply pending migrations; halt at the first fatal failure.")
    migrate.add_argument("--migrations-dir", default=None, help="Script directory (default: MIGRATIONS_DIR/<dialect>)")
    migrate.set_defaults(func=_cmd_run_migrations)

    status = sub.add_parser("migration-status", help="List applied, pending and drifted versions without applying.")
    status.add_argument("--migrations-dir", default=None, help="Script directory (default: MIGRATIONS_DIR/<dialect>)")
    status.set_defaults(func=_cmd_migration_status)

    seed = sub.add_parser("seed", help="Seed reference data by natural key.")
    seed.set_defaults(func=_cmd_seed)

    verify = sub.add_parser("verify-schema", help="Report ok/missing per expected table.")
    verify.add_argument("--strict", action="store_true", help="Exit 1 when any table is missing")
    verify.set_defaults(func=_cmd_verify_schema)

    boot = sub.add_parser("bootstrap", help="Resolve, migrate, seed and verify in one go.")
    boot.set_defaults(func=_cmd_bootstrap)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    # stdout carries the JSON summary only
    logging.basicConfig(level=(args.log_level or settings.LOG_LEVEL).upper(), stream=sys.stderr)

    selector: BackendSelector | None = None
    try:
        selector = BackendSelector.from_settings(settings)
        return args.func(selector, args)
    except DbAnchorError as e:
        _emit(_failure_payload(args.command, e))
        print(f"dbanchor {args.command}: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        # Driver and other unexpected errors: still one JSON object on stdout.
        logger.exception("dbanchor %s failed", args.command)
        _emit(_failure_payload(args.command, e))
        return 1
    finally:
        if selector is not None:
            selector.close()


if __name__ == "__main__":
    sys.exit(main())
