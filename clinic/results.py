"""Result types returned across the service boundary.

Services never let exceptions reach the routers; they return one of
``Success``, ``ValidationFailure``, ``NotFound`` or ``SystemFailure``.
"""
import enum
from dataclasses import dataclass, field
from typing import Generic, List, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    STORE_UNAVAILABLE = "store_unavailable"
    ENCRYPTION_FAILURE = "encryption_failure"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class ValidationFailure:
    messages: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class NotFound:
    message: str = "Not found."


@dataclass(frozen=True)
class SystemFailure:
    kind: ErrorKind = ErrorKind.UNEXPECTED

    @property
    def message(self) -> str:
        # Never expose storage detail to the client
        return "The system is temporarily unavailable. Please try again later."


Result = Union[Success[T], ValidationFailure, NotFound, SystemFailure]
