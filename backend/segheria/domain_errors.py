"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


def not_found(code: str, message: str, **details: Any) -> DomainError:
    return DomainError(code=code, http_status=404, message=message, details=details or None)


def store_failure(code: str, message: str, **details: Any) -> DomainError:
    """Generic failure surfaced after a rejected database write."""
    return DomainError(code=code, http_status=500, message=message, details=details or None)
