"""
Error channel for absorbed pipeline failures
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class ReportedError:
    """A failure absorbed by the pipeline"""
    sequence: int
    source: str
    message: str
    error_type: str
    reported_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorChannel:
    """Collects failures the pipeline absorbed so callers can show a retry affordance"""

    def __init__(self, max_errors: int = 50):
        self.max_errors = max_errors
        self.sequence = 0
        self._errors: List[ReportedError] = []
        self._listeners: List[Callable[[ReportedError], None]] = []

    def report(self, source: str, error: BaseException) -> ReportedError:
        self.sequence += 1
        entry = ReportedError(
            sequence=self.sequence,
            source=source,
            message=str(error) or error.__class__.__name__,
            error_type=error.__class__.__name__,
        )
        self._errors.append(entry)
        if len(self._errors) > self.max_errors:
            self._errors = self._errors[-self.max_errors:]

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.error(f"Error channel listener failed: {e}")

        return entry

    def errors_since(self, sequence: int) -> List[ReportedError]:
        """Errors reported after the given sequence number"""
        return [e for e in self._errors if e.sequence > sequence]

    @property
    def last_error(self) -> Optional[ReportedError]:
        return self._errors[-1] if self._errors else None

    def subscribe(self, listener: Callable[[ReportedError], None]) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear(self) -> None:
        self._errors.clear()
