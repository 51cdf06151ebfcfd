"""
Analytics sink for linkindex.

Responsibilities:
    - Receive events the resolver must not fail a request over
    - Log each event so it reaches whatever collects process logs
    - Keep an in-memory event log for summaries and tests

Attributes:
    events (OrderedDict[str, deque]): Maps code -> recent events, oldest code first

The log is bounded: each code keeps its last `max_events` events and only the
`max_codes` most recently reported codes are kept, since codes come from
request paths.

LLM Prompt Example:
    "Explain how to extend this sink to ship events to a metrics backend
    while preserving the existing API."
"""

import logging
import threading
import time
from collections import OrderedDict, deque
from typing import Deque, Dict, List, Optional

from .base import BaseAnalytics

log = logging.getLogger(__name__)


class Analytics(BaseAnalytics):
    def __init__(self, max_codes: int = 10_000, max_events: int = 1_000):
        """
        Initialize an empty event log.

        events structure:
        { code: deque([ {"timestamp": float, "kind": str, "detail": str}, ... ]) }
        """
        self.max_codes = max_codes
        self.max_events = max_events
        self.events: "OrderedDict[str, Deque[Dict]]" = OrderedDict()
        self._lock = threading.Lock()

    def report(self, code: str, kind: str, detail: str = "") -> None:
        log.warning("link event %s on %r: %s", kind, code, detail)
        event = {"timestamp": time.time(), "kind": kind, "detail": detail}
        with self._lock:
            events = self.events.get(code)
            if events is None:
                events = self.events[code] = deque(maxlen=self.max_events)
                while len(self.events) > self.max_codes:
                    self.events.popitem(last=False)
            else:
                self.events.move_to_end(code)
            events.append(event)

    def get_events(self, code: str, kind: Optional[str] = None) -> List[Dict]:
        """
        Get events for a code, optionally only those of one kind.

        Returns:
            List[Dict]: Events in arrival order, empty if none exist.
        """
        with self._lock:
            events = list(self.events.get(code, ()))
        if kind is not None:
            events = [e for e in events if e["kind"] == kind]
        return events

    def summary(self) -> Dict[str, Dict[str, int]]:
        """
        Count events per code and kind.

        Example:
            {"AbCdEfGhIjk": {"out_of_range": 2}, "missing": {"not_found": 1}}
        """
        with self._lock:
            snapshot = [(code, list(events)) for code, events in self.events.items()]
        summary_data: Dict[str, Dict[str, int]] = {}
        for code, events in snapshot:
            kinds: Dict[str, int] = {}
            for event in events:
                kinds[event["kind"]] = kinds.get(event["kind"], 0) + 1
            summary_data[code] = kinds
        return summary_data
