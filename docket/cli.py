"""docket.cli

Command line interface entry point for docket.

Design constraints:
- argparse-based.
- Lazy imports: do not import heavy dependencies at parse time.
"""

from __future__ import annotations

import argparse
import getpass
import json
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docket.core.config import Config

EPILOG = "Every task leaves a trail."

SECRET_ENV = "DOCKET_WEBHOOK_SECRET"


@dataclass(frozen=True)
class CliContext:
    repo_root: Path


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docket",
        description="Verified delivery receipts from Slack, GitHub and Jira webhooks.",
        epilog=EPILOG,
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit.",
    )

    sub = parser.add_subparsers(dest="command")

    p_api = sub.add_parser("api", help="Start FastAPI server")
    p_api.add_argument("--host", default=None)
    p_api.add_argument("--port", type=int, default=None)

    p_verify = sub.add_parser("verify-chain", help="Recompute a task's hash chain")
    p_verify.add_argument("task_id")
    p_verify.add_argument("--json", action="store_true", help="Machine-readable output.")

    p_sweep = sub.add_parser("sweep-closures", help="Finalize closures whose veto window has elapsed")
    p_sweep.add_argument("--json", action="store_true", help="Machine-readable output.")

    p_ws = sub.add_parser("workspace", help="Manage workspaces")
    ws_sub = p_ws.add_subparsers(dest="workspace_command")

    p_ws_create = ws_sub.add_parser("create", help="Create a workspace")
    p_ws_create.add_argument("name")
    p_ws_create.add_argument("--tier", choices=["agile", "standard", "hardened"], default=None)
    p_ws_create.add_argument("--veto-hours", type=float, default=None, help="Override the tier's veto window.")
    p_ws_create.add_argument("--json", action="store_true", help="Machine-readable output.")

    p_ws_list = ws_sub.add_parser("list", help="List workspaces")
    p_ws_list.add_argument("--json", action="store_true", help="Machine-readable output.")

    p_ws_secret = ws_sub.add_parser("set-secret", help=f"Set a provider webhook secret (reads ${SECRET_ENV})")
    p_ws_secret.add_argument("workspace_id")
    p_ws_secret.add_argument("provider", choices=["slack", "github", "jira"])

    sub.add_parser("status", help="Print system status")

    return parser


def _print_version() -> None:
    from docket import __version__

    print(f"docket v{__version__}")


def _load_config(ctx: CliContext) -> Config:
    from docket.core.config import Config

    return Config.from_repo_defaults(ctx.repo_root)


def _cmd_api(ctx: CliContext, args: argparse.Namespace) -> int:
    config = _load_config(ctx)

    host = args.host or config.api.host
    port = args.port or config.api.port

    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=False)
    return 0


def _cmd_verify_chain(ctx: CliContext, args: argparse.Namespace) -> int:
    from docket.core.database import Database
    from docket.core.event_log import EventLog
    from docket.core.exceptions import TaskNotFoundError

    config = _load_config(ctx)
    db = Database(config.db_path)
    try:
        result = EventLog(db).verify_chain(args.task_id)
    except TaskNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 2
    finally:
        db.close()

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2, sort_keys=True))
    elif result.valid:
        print(f"chain valid: {result.verified_count} events")
    else:
        print(
            f"chain CORRUPTED at event {result.corrupted_at} ({result.reason}); "
            f"{result.verified_count} events verified before it"
        )
    return 0 if result.valid else 1


def _cmd_sweep_closures(ctx: CliContext, args: argparse.Namespace) -> int:
    from docket.core.database import Database
    from docket.core.event_log import EventLog
    from docket.core.registry import Registry
    from docket.proofs.closure import ClosureSweeper

    config = _load_config(ctx)
    db = Database(config.db_path)
    try:
        sweeper = ClosureSweeper(registry=Registry(db), event_log=EventLog(db), cfg=config.closure)
        finalized = sweeper.finalize_due()
    finally:
        db.close()

    if args.json:
        print(json.dumps({"finalized": [{"task_id": e.task_id, "event_id": e.id} for e in finalized]}, indent=2))
    else:
        print(f"finalized {len(finalized)} closure(s)")
        for e in finalized:
            print(f"- {e.task_id} ({e.id})")
    return 0


def _cmd_workspace(ctx: CliContext, args: argparse.Namespace) -> int:
    from docket.core.database import Database
    from docket.core.registry import Registry

    if not args.workspace_command:
        print("usage: docket workspace {create,list,set-secret} ...", file=sys.stderr)
        return 2

    config = _load_config(ctx)
    db = Database(config.db_path)
    registry = Registry(db)
    try:
        if args.workspace_command == "create":
            ws = registry.create_workspace(
                args.name,
                policy_tier=args.tier or config.closure.default_tier,
                veto_window_hours=args.veto_hours,
            )
            if args.json:
                print(json.dumps({"id": ws.id, "name": ws.name, "policy_tier": ws.policy_tier}, indent=2))
            else:
                print(f"workspace {ws.name}: {ws.id} ({ws.policy_tier})")
            return 0

        if args.workspace_command == "list":
            rows = [
                {
                    "id": ws.id,
                    "name": ws.name,
                    "policy_tier": ws.policy_tier,
                    "secrets": [p for p in ("slack", "github", "jira") if ws.secret_for(p)],
                }
                for ws in registry.list_workspaces()
            ]
            if args.json:
                print(json.dumps({"workspaces": rows}, indent=2, sort_keys=True))
            else:
                for r in rows:
                    print(f"{r['id']}  {r['name']:<20} {r['policy_tier']:<9} secrets: {','.join(r['secrets']) or '-'}")
            return 0

        secret = os.environ.get(SECRET_ENV) or getpass.getpass(f"{args.provider} webhook secret: ")
        if not secret:
            print("secret is required", file=sys.stderr)
            return 2
        registry.set_secret(args.workspace_id, args.provider, secret)
        print(f"{args.provider} secret set for {args.workspace_id}")
        return 0
    finally:
        db.close()


def _cmd_status(ctx: CliContext, args: argparse.Namespace) -> int:
    from docket.core.config import Config
    from docket.core.exceptions import ConfigError

    repo_root = ctx.repo_root

    cfg_user = repo_root / "config" / "user.yaml"
    cfg_path = cfg_user if cfg_user.exists() else repo_root / "config" / "default.yaml"

    config: Config | None
    try:
        config = Config.from_yaml(cfg_path)
        config_status = str(cfg_path)
    except ConfigError as e:
        config = None
        config_status = f"{cfg_path} (error: {e})"

    db_path = config.db_path if config else repo_root / "data" / "docket.db"
    db_status = "present" if db_path.exists() else "missing"

    print("docket status")
    print(f"- config: {config_status}")
    print(f"- db: {db_path} ({db_status})")
    if config is not None:
        print(f"- api token: {'set' if config.api.auth_token else 'NOT SET'}")
        print(f"- summary models: {'configured' if config.summary.api_key else 'template fallback only'}")
        print(f"- rate limiter: {config.rate_limits.backend}")

    health = "ok" if config is not None else "degraded"
    print(f"- system health: {health}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    ctx = CliContext(repo_root=_repo_root_from_cwd())

    dispatch: dict[str, Callable[[CliContext, argparse.Namespace], int]] = {
        "api": _cmd_api,
        "verify-chain": _cmd_verify_chain,
        "sweep-closures": _cmd_sweep_closures,
        "workspace": _cmd_workspace,
        "status": _cmd_status,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    return int(fn(ctx, args))


if __name__ == "__main__":
    raise SystemExit(main())
