"""
ErrorReporter — out-of-band sink for unexpected errors.

Errors raised while ensuring queues are both raised to the caller and
reported here, so operational visibility survives callers that swallow them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable


@runtime_checkable
class ErrorReporter(Protocol):
    """Anything with a report_error(exc, fields) method."""

    def report_error(
        self,
        exc: BaseException,
        fields: Mapping[str, object] | None = None,
    ) -> None:
        """
        Record an error with optional context (queue name, identifiers, note).

        Must not raise.
        """
        ...
