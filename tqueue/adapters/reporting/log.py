"""
LoggingErrorReporter — ErrorReporter that writes to the standard logging tree.

Context fields from TQueueError.fields are merged with the fields passed at
the call site and attached to the record as ``extra={"fields": ...}`` so
structured handlers can pick them up.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping

from tqueue.domain.errors import TQueueError


@dataclasses.dataclass
class LoggingErrorReporter:
    """
    Parameters
    ----------
    logger : destination logger (default ``tqueue.errors``)
    """

    logger: logging.Logger = dataclasses.field(
        default_factory=lambda: logging.getLogger("tqueue.errors")
    )

    def report_error(
        self,
        exc: BaseException,
        fields: Mapping[str, object] | None = None,
    ) -> None:
        context: dict[str, object] = {}
        if isinstance(exc, TQueueError):
            context.update(exc.fields)
        if fields:
            context.update(fields)
        note = context.pop("note", None) or type(exc).__name__
        self.logger.error(
            "%s: %s %s",
            note,
            exc,
            " ".join(f"{k}={v}" for k, v in sorted(context.items())),
            exc_info=exc,
            extra={"fields": context},
        )
