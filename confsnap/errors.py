from __future__ import annotations

from typing import Any


class BuildError(Exception):
    """Fatal pipeline failure. Aborts the run before any output is committed."""


class StructuralError(BuildError):
    """A producer (or this pipeline) handed over data that breaks a shape contract."""


class MissingIdError(StructuralError):
    pass


class NonNumericIdError(StructuralError):
    pass


class FetchError(BuildError):
    pass


class StrictValidationError(BuildError):
    def __init__(self, summary: Any) -> None:
        self.summary = summary
        details = "; ".join(summary.warnings) or "unknown validation issues"
        super().__init__(f"validation failed under strict mode: {details}")


class VerificationError(BuildError):
    def __init__(self, errors: list[str], *, preview: int = 5) -> None:
        self.errors = list(errors)
        super().__init__(format_issue_preview(self.errors, preview=preview, label="verify failed"))


def format_issue_preview(issues: list[str], *, preview: int = 5, label: str = "issues") -> str:
    shown = issues[: max(preview, 0)]
    message = f"{label} ({len(issues)} issues)"
    if shown:
        message += ": " + "; ".join(shown)
    remainder = len(issues) - len(shown)
    if remainder > 0:
        message += f" (+{remainder} more)"
    return message
