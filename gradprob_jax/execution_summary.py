"""Wall-clock accounting for evaluator calls.

Statistics are keyed by call category. The category names used by the
evaluators ("Evaluator::Total", "Evaluator::Residual", "Evaluator::Jacobian")
are shared with other evaluators so reports can aggregate them.
"""

import contextlib
import time
from collections.abc import Iterator
from typing import NamedTuple


class CallStatistics(NamedTuple):
    """Total wall time in seconds and number of calls for one category."""

    time: float = 0.0
    calls: int = 0


class ExecutionSummary:
    """Accumulates :class:`CallStatistics` per category name."""

    def __init__(self):
        self._statistics: dict[str, CallStatistics] = {}

    def increment_time(self, name: str, seconds: float) -> None:
        """Add ``seconds`` to ``name`` and count one call."""
        stats = self._statistics.get(name, CallStatistics())
        self._statistics[name] = CallStatistics(
            time=stats.time + seconds, calls=stats.calls + 1
        )

    def increment_call(self, name: str) -> None:
        stats = self._statistics.get(name, CallStatistics())
        self._statistics[name] = stats._replace(calls=stats.calls + 1)

    def statistics(self) -> dict[str, CallStatistics]:
        return dict(self._statistics)


@contextlib.contextmanager
def execution_timer(name: str, summary: ExecutionSummary) -> Iterator[None]:
    """Time the enclosed block and record it under ``name``."""
    start = time.perf_counter()
    try:
        yield
    finally:
        summary.increment_time(name, time.perf_counter() - start)
