from __future__ import annotations

import logging
import os
import subprocess

from .app_logging import log_event
from .config import ScalingConfig
from .models import NoOp, ScaleDown, ScaleUp, ScalingAction

RUNNER_NAME_ENV = "RUNNER_NAME"


class CommandError(RuntimeError):
    def __init__(
        self,
        direction: str,
        runner_name: str,
        command: str,
        detail: str,
        returncode: int | None = None,
    ) -> None:
        super().__init__(f"{direction} command {command!r} for runner {runner_name} failed: {detail}")
        self.direction = direction
        self.runner_name = runner_name
        self.command = command
        self.returncode = returncode


class ScaleExecutor:
    def __init__(
        self,
        scaling: ScalingConfig,
        logger: logging.Logger,
        *,
        dry_run: bool = False,
    ) -> None:
        self.scaling = scaling
        self.logger = logger
        self.dry_run = dry_run

    def runner_name(self, action: ScalingAction) -> str:
        if isinstance(action, ScaleUp):
            return f"{self.scaling.runner_prefix}{action.new_runner_index}"
        if isinstance(action, ScaleDown):
            return action.runner_name
        raise ValueError(f"No runner targeted by {action!r}")

    def command_for(self, action: ScalingAction) -> tuple[str, str]:
        if isinstance(action, ScaleUp):
            return "up", self.scaling.up_command
        if isinstance(action, ScaleDown):
            return "down", self.scaling.down_command
        raise ValueError(f"No command for {action!r}")

    def _run(self, command: str, env: dict[str, str]) -> subprocess.CompletedProcess[bytes]:
        # Standard streams are inherited so the command's output lands in ours.
        return subprocess.run(
            [command],
            env=env,
            check=False,
            timeout=self.scaling.command_timeout_seconds,
        )

    def apply(self, action: ScalingAction) -> None:
        if isinstance(action, NoOp):
            return
        direction, command = self.command_for(action)
        runner = self.runner_name(action)
        env = {**os.environ, RUNNER_NAME_ENV: runner}

        if self.dry_run:
            log_event(
                self.logger,
                logging.INFO,
                "scale_skipped_dry_run",
                direction=direction,
                runner=runner,
                command=command,
            )
            return

        log_event(
            self.logger,
            logging.INFO,
            "scale_started",
            direction=direction,
            runner=runner,
            command=command,
        )
        try:
            process = self._run(command, env)
        except subprocess.TimeoutExpired as exc:
            raise CommandError(direction, runner, command, f"timed out after {exc.timeout}s") from exc
        except OSError as exc:
            raise CommandError(direction, runner, command, f"could not start: {exc}") from exc
        if process.returncode != 0:
            raise CommandError(
                direction,
                runner,
                command,
                f"exit code {process.returncode}",
                returncode=process.returncode,
            )
        log_event(
            self.logger,
            logging.INFO,
            "scale_succeeded",
            direction=direction,
            runner=runner,
        )
