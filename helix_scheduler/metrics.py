"""Simple in-process metrics registry receiving scheduler analytics."""
from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict

from .domain import RoundOutcome
from .repositories import MetricsSink


@dataclass
class MetricsRegistry(MetricsSink):
    """Holds counters and histograms exposed by the application."""

    rounds_completed: int = 0
    perfect_rounds: int = 0
    rounds_abandoned: int = 0
    rotations: int = 0
    skip_number_histogram: Counter = field(default_factory=Counter)
    level_changes: Counter = field(default_factory=Counter)
    error_codes: Counter = field(default_factory=Counter)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_round(self, learner_id: str, outcome: RoundOutcome) -> None:
        reposition = outcome.reposition
        with self._lock:
            self.rounds_completed += 1
            if reposition.new_position != reposition.previous_position:
                self.perfect_rounds += 1
            self.skip_number_histogram[reposition.skip_number] += 1
            for update in outcome.mastery_updates:
                if update.level_changed:
                    self.level_changes[(update.previous_level, update.new_level)] += 1
            if outcome.rotation is not None:
                self.rotations += 1

    def record_abandon(self, learner_id: str, unit_id: str) -> None:
        with self._lock:
            self.rounds_abandoned += 1

    def record_error(self, operation: str, code: str) -> None:
        with self._lock:
            self.error_codes[(operation, code)] += 1

    @property
    def perfect_round_rate(self) -> float:
        if self.rounds_completed == 0:
            return 0.0
        return self.perfect_rounds / self.rounds_completed

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "rounds_completed": self.rounds_completed,
                "perfect_rounds": self.perfect_rounds,
                "perfect_round_rate": self.perfect_round_rate,
                "rounds_abandoned": self.rounds_abandoned,
                "rotations": self.rotations,
                "skip_numbers": {str(key): value for key, value in sorted(self.skip_number_histogram.items())},
                "level_changes": {
                    f"{old}->{new}": value for (old, new), value in sorted(self.level_changes.items())
                },
                "errors": {
                    f"{operation}:{code}": value
                    for (operation, code), value in sorted(self.error_codes.items())
                },
            }


METRICS = MetricsRegistry()

__all__ = ["METRICS", "MetricsRegistry"]
