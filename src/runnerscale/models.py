from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Union


class JobState(IntEnum):
    PENDING = 1
    PROCESSING = 2
    WAITING = 5
    COMPLETING = 9

    @property
    def label(self) -> str:
        return self.name.lower()


# Jobs in these states pin the runner they are assigned to.
BUSY_STATES = (JobState.PROCESSING, JobState.COMPLETING)


@dataclass(frozen=True, slots=True)
class JobCounts:
    pending: int = 0
    processing: int = 0
    waiting: int = 0
    completing: int = 0

    def as_dict(self) -> dict[str, int]:
        return {state.label: getattr(self, state.label) for state in JobState}


@dataclass(frozen=True, slots=True)
class RunnerInventory:
    names: tuple[str, ...] = ()
    idle_runner: str | None = None

    def __post_init__(self) -> None:
        if self.idle_runner is not None and self.idle_runner not in self.names:
            raise ValueError(f"idle runner {self.idle_runner!r} is not part of the inventory")

    @property
    def active_count(self) -> int:
        return len(self.names)


@dataclass(frozen=True, slots=True)
class NoOp:
    pass


@dataclass(frozen=True, slots=True)
class ScaleUp:
    new_runner_index: int


@dataclass(frozen=True, slots=True)
class ScaleDown:
    runner_name: str


ScalingAction = Union[NoOp, ScaleUp, ScaleDown]
