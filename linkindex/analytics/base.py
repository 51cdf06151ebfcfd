"""
Abstract Base Class for observability sinks.

Responsibilities:
    - Define how the resolver reports non-fatal events (visits that fell
      outside a histogram window, lookups that matched nothing)
    - Support easy substitution (e.g., in-memory, log shipping, metrics)
"""

from abc import ABC, abstractmethod

__all__ = ["BaseAnalytics"]


class BaseAnalytics(ABC):
    """Abstract base for pluggable observability sinks."""

    @abstractmethod
    def report(self, code: str, kind: str, detail: str = "") -> None:  # pragma: no cover
        """
        Record an event for a link.

        Args:
            code (str): Suffix or token the event concerns.
            kind (str): Event type, e.g. "out_of_range" or "not_found".
            detail (str): Free-form context, usually the exception text.
        """
        raise NotImplementedError

    @abstractmethod
    def summary(self) -> dict:  # pragma: no cover
        """
        Provide aggregated event counts.

        Returns:
            dict: code -> {kind: count}
        """
        raise NotImplementedError
