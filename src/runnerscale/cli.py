from __future__ import annotations

import argparse
import logging

import yaml

from .app_logging import LOGGER_NAME, log_event, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .executor import ScaleExecutor
from .metrics import MetricsPublisher
from .reconciler import Reconciler, describe_action
from .store import QueryError, StartupError, Store


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="runnerscale", description="Job runner fleet autoscaler")
    parser.add_argument("--config", required=True, help="Path to runnerscale YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Serve metrics and run the reconciliation loop")
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation cycle, then exit",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log scaling actions instead of running the up/down commands",
    )
    subparsers.add_parser("status", help="Show queue, fleet and the next scaling action")
    return parser


def _open_runtime(config: AppConfig, *, dry_run: bool = False) -> tuple[Store, Reconciler, MetricsPublisher]:
    ensure_local_paths(config)
    logger = setup_logger(config.log.path)
    log_event(logger, logging.INFO, "connecting", database=config.database.display_name)
    store = Store(config.database.sqlalchemy_url())
    try:
        store.ping()
    except StartupError:
        store.close()
        raise
    publisher = MetricsPublisher()
    executor = ScaleExecutor(config.scaling, logger, dry_run=dry_run)
    reconciler = Reconciler(config=config, store=store, executor=executor, publisher=publisher, logger=logger)
    return store, reconciler, publisher


def cmd_run(config: AppConfig, *, once: bool = False, dry_run: bool = False) -> int:
    logger = logging.getLogger(LOGGER_NAME)
    try:
        store, reconciler, publisher = _open_runtime(config, dry_run=dry_run)
    except StartupError as exc:
        log_event(logger, logging.ERROR, "startup_failed", error=str(exc))
        return 1
    try:
        if once:
            return 0 if reconciler.run_once() else 1
        try:
            publisher.serve(config.metrics.listen_address)
        except (OSError, ValueError) as exc:
            log_event(logger, logging.ERROR, "startup_failed", error=f"can't expose metrics: {exc}")
            return 1
        log_event(logger, logging.INFO, "metrics_listening", address=config.metrics.listen_address)
        reconciler.run_forever()
    except KeyboardInterrupt:
        log_event(logger, logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 0
    finally:
        store.close()
    return 0


def cmd_status(config: AppConfig) -> int:
    logger = logging.getLogger(LOGGER_NAME)
    try:
        store, reconciler, _ = _open_runtime(config)
    except StartupError as exc:
        log_event(logger, logging.ERROR, "startup_failed", error=str(exc))
        return 1
    try:
        counts, inventory, action = reconciler.observe()
    except QueryError as exc:
        log_event(logger, logging.ERROR, "status_failed", query=exc.query, error=str(exc))
        return 1
    finally:
        store.close()

    print("Jobs:")
    for state, value in counts.as_dict().items():
        print(f"  {state:12} {value}")

    print("\nRunners:")
    if not inventory.names:
        print(f"  (no runner named {config.scaling.runner_prefix}*)")
    for name in inventory.names:
        marker = " (idle)" if name == inventory.idle_runner else ""
        print(f"  {name}{marker}")

    print(f"\nNext action: {describe_action(action)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        parser.error(f"invalid config {args.config}: {exc}")

    if args.command == "run":
        return cmd_run(config, once=bool(args.once), dry_run=bool(args.dry_run))
    if args.command == "status":
        return cmd_status(config)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
