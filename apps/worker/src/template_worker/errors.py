from __future__ import annotations


class CollaboratorError(RuntimeError):
    pass


class TransientCollaboratorError(CollaboratorError):
    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class PermanentCollaboratorError(CollaboratorError):
    pass


class CoordinatorError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        # No status code means the coordinator was never reached.
        return self.status_code is None or self.status_code >= 500 or self.status_code in {408, 429}


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransientCollaboratorError):
        return True
    if isinstance(exc, CoordinatorError):
        return exc.transient
    return False
