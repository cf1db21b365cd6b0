"""Error taxonomy.

The executor absorbs only transient ledger failures. Everything else surfaces
as one of these, with enough context attached to resume or report.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tokenflow.orchestrator import WorkflowReport


class TokenflowError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(TokenflowError):
    """Missing or invalid configuration. Fatal at startup."""


class UnparseableKeyError(TokenflowError, ValueError):
    """No key parser accepted the given text."""


class LedgerStatusError(TokenflowError):
    """The ledger (or the transport in front of it) answered with a non-success status."""

    def __init__(self, status: str, message: str | None = None):
        self.status = status
        super().__init__(message or status)


class RejectedIntentError(TokenflowError):
    """The ledger rejected an intent with a non-transient status."""

    def __init__(self, status: str, kind: str, receipt: Any = None):
        self.status = status
        self.kind = kind
        self.receipt = receipt
        super().__init__(f"{kind} rejected: {status}")


class RetryBudgetExhausted(TokenflowError):
    def __init__(self, attempts: int, last_error: BaseException | None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempt(s): {last_error!r}")

    @property
    def status(self) -> str | None:
        return getattr(self.last_error, "status", None)


class PartialBatchError(TokenflowError):
    """A mint chunk failed after earlier chunks were durably minted.

    ``completed`` is the index of the first metadata entry that was *not*
    minted, so passing it back as ``offset`` resumes the job.
    """

    def __init__(self, completed: int, serials: list[int], chunk_index: int, cause: BaseException):
        self.completed = completed
        self.serials = serials
        self.chunk_index = chunk_index
        self.cause = cause
        super().__init__(f"chunk {chunk_index} failed after {completed} entries minted: {cause}")


class WorkflowError(TokenflowError):
    """A lifecycle step failed. ``report.state`` is the last state reached."""

    def __init__(self, report: WorkflowReport, message: str | None = None):
        self.report = report
        super().__init__(message or f"workflow {report.workflow_id} failed at {report.failed_step}: {report.error}")
