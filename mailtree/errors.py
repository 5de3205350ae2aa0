from __future__ import annotations

from typing import Optional, Sequence


class MailtreeError(Exception):
    pass


class PathInvalid(MailtreeError):
    """A mutation addressed a node that does not (or no longer) exist."""

    def __init__(self, path: str, segment: Optional[str] = None, reason: Optional[str] = None) -> None:
        self.path = path
        self.segment = segment
        self.reason = reason
        message = f"Invalid path: {path}"
        if segment:
            message += f" (unresolved segment: {segment})"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class PathSyntaxError(PathInvalid):
    pass


class ValidationFailed(MailtreeError):
    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        preview = "; ".join(self.errors[:3])
        if len(self.errors) > 3:
            preview += f"; ... ({len(self.errors) - 3} more)"
        super().__init__(f"Component tree failed validation: {preview}")


class AdapterFailure(MailtreeError):
    """AI refinement failed; callers may retry when `retryable` is set."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class PersistenceError(MailtreeError):
    pass
