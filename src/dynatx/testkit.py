from __future__ import annotations

from collections.abc import Callable

from .mocks import ANY, FakeDynamoDBClient, client_error


def no_sleep(_: float) -> None:
    return None


def fixed_uniform(offset: float = 0.0) -> Callable[[float, float], float]:
    """A ``random.uniform`` replacement that returns ``offset`` clamped to the range."""

    def uniform(low: float, high: float) -> float:
        return min(max(offset, low), high)

    return uniform


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "RecordingSleep",
    "client_error",
    "fixed_uniform",
    "no_sleep",
]
