"""Sinks for the per-iteration diagnostics of the optimizers."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

from galrot.utils import setup_logger


@dataclass(frozen=True)
class IterationEvent:
    """State of an optimizer after one iteration.

    ``stage`` names the optimization that emitted the event, e.g. ``"fit"``
    or ``"frozen R_0=8.3"``.
    """

    stage: str
    iteration: int
    cost: float
    best_cost: float
    params: np.ndarray = field(repr=False)
    best_params: np.ndarray = field(repr=False)
    reduced_parallaxes: dict = field(default_factory=dict, repr=False)


class FitObserver(Protocol):
    def on_iteration(self, event: IterationEvent) -> None:
        ...


class LoggingObserver:
    """Write iteration events through a logger.

    Args:
        log_file: Optional file that receives the events as well.
        every: Log only every n-th iteration.
    """

    def __init__(self, log_file: "str | Path | None" = None, every: int = 1):
        self.logger = setup_logger("galrot.iterations", log_file=log_file, clear_logs=True)
        self.every = max(1, every)

    def on_iteration(self, event: IterationEvent) -> None:
        if event.iteration % self.every:
            return
        self.logger.info(
            "[%s] iter %d: cost %.10g (best %.10g) params %s",
            event.stage,
            event.iteration,
            event.cost,
            event.best_cost,
            np.array2string(np.asarray(event.params), precision=6, separator=", "),
        )
        if event.reduced_parallaxes:
            self.logger.debug(
                "[%s] reduced parallaxes: %s",
                event.stage,
                ", ".join(f"{i}:{p:.6g}" for i, p in event.reduced_parallaxes.items()),
            )


class RecordingObserver:
    """Keep every event in memory."""

    def __init__(self):
        self.events: list[IterationEvent] = []

    def on_iteration(self, event: IterationEvent) -> None:
        self.events.append(event)

    def stages(self) -> list[str]:
        return sorted({e.stage for e in self.events})


def notify(observer: Optional[FitObserver], event: IterationEvent) -> None:
    if observer is not None:
        observer.on_iteration(event)
