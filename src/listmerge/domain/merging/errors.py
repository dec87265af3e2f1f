"""Fatal errors of a merge session.

Only these abort a session. Everything recoverable is recorded as a
``MergeIssue`` on the result instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .catalog import TemplateProblem


class MergeError(RuntimeError):
    """Base class for errors that abort a merge session."""


class TemplateNotFoundError(MergeError, LookupError):
    """Raised when a requested template id is not in the catalog."""

    def __init__(self, template_id: str, *, known: Sequence[str] = ()) -> None:
        self.template_id = template_id
        self.known = tuple(known)
        message = f"Unknown header template: {template_id!r}"
        if self.known:
            message += f" (known: {', '.join(sorted(self.known))})"
        super().__init__(message)


class TemplateInvalidError(MergeError, ValueError):
    """Raised when a template fails structural validation."""

    def __init__(self, template_id: str, problems: Sequence[TemplateProblem]) -> None:
        self.template_id = template_id
        self.problems = tuple(problems)
        listed = "; ".join(str(problem) for problem in self.problems)
        super().__init__(f"Header template {template_id!r} is invalid: {listed}")


class MergeSettingsError(MergeError, ValueError):
    """Raised when session settings do not fit the template or the sources."""


class MergeCancelledError(MergeError):
    """Raised when a caller cancels a running session; no result is produced."""

    def __init__(self, *, processed_sources: int, total_sources: int) -> None:
        self.processed_sources = processed_sources
        self.total_sources = total_sources
        super().__init__(
            f"Merge session cancelled after {processed_sources} of {total_sources} sources"
        )
