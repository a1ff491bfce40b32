"""CLI for deploying a contract registry to one network."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from .chain import ChainClient, DryRunChainClient, Web3ChainClient
from .config import DeployProfile, load_profile
from .errors import (
    CyclicDependency,
    DeployError,
    DeploymentLocked,
    RegistryError,
    UnknownAccount,
    UnknownArtifact,
)
from .executor import DeploymentExecutor
from .logging_utils import configure_logging
from .orchestrator import DeploymentOrchestrator
from .registry import load_registry
from .state_store import JsonStateStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_LOCKED = 3

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    base = argparse.ArgumentParser(add_help=False)
    base.add_argument("--profile", required=True, help="Path to network profile YAML")

    parser = argparse.ArgumentParser(description="Deploy a contract registry to one network")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", parents=[base], help="Deploy pending artifacts and apply hooks")
    run_parser.add_argument("--registry", default=None, help="Override the profile's artifact registry")
    run_parser.add_argument("--only", action="append", default=[], help="Deploy only this artifact (and its dependencies)")
    run_parser.add_argument("--tag", action="append", default=[], help="Deploy artifacts carrying this tag")
    run_parser.add_argument("--force", action="append", default=[], help="Re-deploy this artifact even if recorded")
    run_parser.add_argument("--force-all", action="store_true")
    run_parser.add_argument("--force-hooks", action="store_true", help="Re-apply hooks already journaled")
    run_parser.add_argument("--continue-on-error", action="store_true", default=None)
    run_parser.add_argument("--dry-run", action="store_true", help="Use deterministic fake addresses, no RPC")
    run_parser.add_argument("--log-level", default="INFO")

    status_parser = subparsers.add_parser("status", parents=[base], help="Print recorded addresses")
    status_parser.add_argument("--dry-run", action="store_true", help="Read the dry-run state instead")

    return parser.parse_args(argv)


def _log_path_for(network: str, dry_run: bool) -> str:
    ts = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    suffix = "_dry_run" if dry_run else ""
    return f"runs/deploy/{network}_{ts}{suffix}.log"


def _state_path(profile: DeployProfile, dry_run: bool) -> Path:
    path = Path(profile.state_path)
    if dry_run:
        return path.with_name(f"{path.stem}.dry_run{path.suffix}")
    return path


def _build_chain_client(profile: DeployProfile, dry_run: bool) -> ChainClient:
    if dry_run:
        return DryRunChainClient(profile.network, profile.named_accounts)
    return Web3ChainClient.from_profile(profile)


def _install_interrupt_handler(cancel: threading.Event) -> Any:
    def handler(signum: int, frame: Any) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        logger.warning("DEPLOY: interrupt received; stopping after the current artifact (repeat to abort)")

    return signal.signal(signal.SIGINT, handler)


def _run(args: argparse.Namespace) -> int:
    profile = load_profile(Path(args.profile))
    level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    configure_logging(level, _log_path_for(profile.network, args.dry_run))
    registry = load_registry(Path(args.registry or profile.registry_path)).select(args.only, args.tag)
    logger.info("DEPLOY: registry selected (network=%s artifacts=%s)", profile.network, ",".join(registry.names()))
    store = JsonStateStore(_state_path(profile, args.dry_run))
    executor = DeploymentExecutor(_build_chain_client(profile, args.dry_run), profile.retry.as_policy())
    cancel = threading.Event()
    continue_on_error = profile.continue_on_error if args.continue_on_error is None else args.continue_on_error
    orchestrator = DeploymentOrchestrator(executor, store, continue_on_error=continue_on_error, cancel_event=cancel)
    previous_handler = _install_interrupt_handler(cancel)
    try:
        result = orchestrator.run(
            registry.artifacts,
            profile.network,
            registry.hooks,
            force=args.force,
            force_all=args.force_all,
            force_hooks=args.force_hooks,
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    for line in result.summary_lines():
        print(line)
    if profile.export_root and not args.dry_run:
        exported = store.export(profile.network, Path(profile.export_root))
        logger.info("DEPLOY: exported addresses to %s", exported)
    return EXIT_OK if result.succeeded else EXIT_FAILED


def _status(args: argparse.Namespace) -> int:
    profile = load_profile(Path(args.profile))
    store = JsonStateStore(_state_path(profile, args.dry_run))
    print(json.dumps({profile.network: store.load(profile.network)}, indent=2, sort_keys=True))
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        if args.command == "status":
            return _status(args)
        return _run(args)
    except DeploymentLocked as exc:
        logger.error("DEPLOY: %s", exc)
        return EXIT_LOCKED
    except (
        RegistryError,
        CyclicDependency,
        UnknownArtifact,
        UnknownAccount,
        FileNotFoundError,
        ValueError,
        yaml.YAMLError,
    ) as exc:
        logger.error("DEPLOY: invalid deployment input: %s", exc)
        return EXIT_INVALID
    except DeployError as exc:
        logger.exception("DEPLOY: run aborted: %s", exc)
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
