"""Typed operation results returned by the core services."""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from app.core.errors import CoreError

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[CoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: CoreError) -> "ServiceResult[T]":
        return cls(error=error)
