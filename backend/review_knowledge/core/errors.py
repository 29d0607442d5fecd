"""Error taxonomy and the ``Result`` type used behind fail-open boundaries.

Internal search and assembly helpers return ``Ok(value)`` or ``Err(error)``
so callers and tests can see *which* failure happened. Public entry points
collapse any ``Err`` into an empty contribution after logging it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, Enum):
    EMBEDDING_UNAVAILABLE = "embedding-unavailable"
    STORE_FAILURE = "store-failure"
    RECORD_NOT_FOUND = "record-not-found"
    ASSEMBLY_FAILED = "assembly-failed"
    INVALID_INPUT = "invalid-input"


class RetrievalError(Exception):
    """Base class for failures raised inside the retrieval engine."""

    code: ErrorCode = ErrorCode.STORE_FAILURE

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = dict(context or {})
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class EmbeddingUnavailableError(RetrievalError):
    """The embedding provider returned nothing for a query."""

    code = ErrorCode.EMBEDDING_UNAVAILABLE


class StoreError(RetrievalError):
    """A corpus store call raised."""

    code = ErrorCode.STORE_FAILURE


class RecordNotFoundError(RetrievalError):
    code = ErrorCode.RECORD_NOT_FOUND


class AssemblyError(RetrievalError):
    """A single match could not be assembled into a thread."""

    code = ErrorCode.ASSEMBLY_FAILED


class InvalidInputError(ValueError):
    """Malformed input rejected where it is first constructed."""

    code = ErrorCode.INVALID_INPUT


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    error: RetrievalError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


__all__ = [
    "ErrorCode",
    "RetrievalError",
    "EmbeddingUnavailableError",
    "StoreError",
    "RecordNotFoundError",
    "AssemblyError",
    "InvalidInputError",
    "Ok",
    "Err",
    "Result",
]
