from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class JobBoardError(Exception):

    kind = "error"


class DataServiceError(JobBoardError):
    """Raised by the data layer when a query or command is rejected."""

    kind = "data_service"


class NotFound(DataServiceError):

    kind = "not_found"


class LoadFailure(JobBoardError):

    kind = "load_failure"


class CommandFailure(JobBoardError):

    kind = "command_failure"


class ConnectionFailure(JobBoardError):

    kind = "connection_failure"


class ValidationFailure(JobBoardError):

    kind = "validation_failure"


class Superseded(JobBoardError):
    """The scope an operation was issued for is no longer the active one."""

    kind = "superseded"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a store action: either a value or the failure that stopped it."""

    value: Optional[T] = None
    error: Optional[JobBoardError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    @classmethod
    def success(cls, value: Any = None) -> "Outcome[Any]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: JobBoardError) -> "Outcome[Any]":
        return cls(error=error)
