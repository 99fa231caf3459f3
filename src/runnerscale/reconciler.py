from __future__ import annotations

import logging
import time
from typing import Callable

from .app_logging import log_event
from .config import AppConfig
from .decision import decide
from .executor import CommandError, ScaleExecutor
from .metrics import MetricsPublisher
from .models import JobCounts, NoOp, RunnerInventory, ScaleUp, ScalingAction
from .store import QueryError, Store


class Reconciler:
    def __init__(
        self,
        config: AppConfig,
        store: Store,
        executor: ScaleExecutor,
        publisher: MetricsPublisher,
        logger: logging.Logger,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.store = store
        self.executor = executor
        self.publisher = publisher
        self.logger = logger
        self.clock = clock
        self.sleep = sleep

    def run_forever(self) -> None:
        interval = self.config.reconcile.interval_seconds
        next_tick = self.clock() + interval
        while True:
            delay = next_tick - self.clock()
            if delay > 0:
                self.sleep(delay)
            self.single_cycle()
            # Ticks that elapsed while the cycle was running are dropped.
            now = self.clock()
            next_tick += interval
            while next_tick <= now:
                next_tick += interval

    def run_once(self) -> bool:
        return self.single_cycle()

    def single_cycle(self) -> bool:
        try:
            self.reconcile()
        except QueryError as exc:
            log_event(
                self.logger,
                logging.ERROR,
                "reconcile_failed",
                reason="query",
                query=exc.query,
                error=str(exc),
            )
            return False
        except CommandError as exc:
            log_event(
                self.logger,
                logging.ERROR,
                "reconcile_failed",
                reason="command",
                direction=exc.direction,
                runner=exc.runner_name,
                command=exc.command,
                returncode=exc.returncode,
                error=str(exc),
            )
            return False
        return True

    def observe(self) -> tuple[JobCounts, RunnerInventory, ScalingAction]:
        scaling = self.config.scaling
        counts = self.store.job_counts()
        inventory = self.store.runner_inventory(scaling.runner_prefix)
        action = decide(counts, inventory.active_count, inventory.idle_runner, scaling)
        return counts, inventory, action

    def reconcile(self) -> ScalingAction:
        counts, inventory, action = self.observe()

        if not isinstance(action, NoOp):
            self.executor.apply(action)
        self.publisher.publish(counts, inventory)

        log_event(
            self.logger,
            logging.INFO,
            "reconcile_summary",
            runners=inventory.active_count,
            pending=counts.pending,
            processing=counts.processing,
            waiting=counts.waiting,
            completing=counts.completing,
            idle_runner=inventory.idle_runner,
            action=describe_action(action),
        )
        return action


def describe_action(action: ScalingAction) -> str:
    if isinstance(action, NoOp):
        return "noop"
    if isinstance(action, ScaleUp):
        return f"scale_up:{action.new_runner_index}"
    return f"scale_down:{action.runner_name}"
