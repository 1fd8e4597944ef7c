"""Shared result vocabulary for every remote theme operation.

``RemoteResult`` is what a single gateway call produces. ``OperationResult``
is what a caller-facing operation hands back to the HTTP layer.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")

# The full body always travels in ``remote_body``; error strings get a preview.
_BODY_PREVIEW_CHARS = 500


class ErrorKind(str, Enum):
    INPUT = "input"
    NOT_INSTALLED = "not_installed"
    EXPIRED = "expired"
    TRANSPORT = "transport"
    API = "api"
    DOMAIN = "domain"
    UNKNOWN = "unknown"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self]


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INPUT: 400,
    ErrorKind.NOT_INSTALLED: 404,
    ErrorKind.EXPIRED: 401,
    ErrorKind.TRANSPORT: 500,
    ErrorKind.API: 500,
    ErrorKind.DOMAIN: 400,
    ErrorKind.UNKNOWN: 500,
}


class DeploymentError(RuntimeError):
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class InputError(DeploymentError):
    kind = ErrorKind.INPUT


@dataclass(frozen=True)
class UserError:
    field: tuple[str, ...] | None
    message: str

    @classmethod
    def from_payload(cls, payload: Any) -> "UserError":
        if not isinstance(payload, dict):
            return cls(field=None, message=str(payload))
        raw_field = payload.get("field")
        if isinstance(raw_field, list):
            field_path: tuple[str, ...] | None = tuple(str(part) for part in raw_field)
        elif isinstance(raw_field, str):
            field_path = (raw_field,)
        else:
            field_path = None
        return cls(field=field_path, message=str(payload.get("message") or ""))

    def describe(self) -> str:
        if self.field:
            return f"{'.'.join(self.field)}: {self.message}"
        return self.message

    def as_dict(self) -> dict[str, Any]:
        return {"field": list(self.field) if self.field is not None else None, "message": self.message}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class TransportFailure:
    status_code: int | None
    body: str

    @property
    def remote_message(self) -> str | None:
        """The first message of a JSON ``errors`` payload, if the body has one."""
        try:
            parsed = json.loads(self.body)
        except ValueError:
            return None
        if not isinstance(parsed, dict):
            return None
        errors = parsed.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first_message = errors[0].get("message")
            if isinstance(first_message, str) and first_message:
                return first_message
        if isinstance(errors, str) and errors:
            return errors
        return None

    def describe(self, action: str) -> str:
        if self.status_code is None:
            return self.body or f"{action} failed: network error"
        remote_message = self.remote_message
        if remote_message:
            return remote_message
        detail = self.body.strip()
        if detail:
            return f"{action} failed ({self.status_code}): {detail[:_BODY_PREVIEW_CHARS]}"
        return f"{action} failed ({self.status_code})"

    @property
    def message(self) -> str:
        return self.describe("Shopify request")


@dataclass(frozen=True)
class ApiFailure:
    message: str


@dataclass(frozen=True)
class DomainFailure:
    user_errors: tuple[UserError, ...]

    @property
    def summary(self) -> str:
        return "; ".join(error.describe() for error in self.user_errors)


RemoteFailure = Union[TransportFailure, ApiFailure, DomainFailure]
RemoteResult = Union[Ok[T], TransportFailure, ApiFailure, DomainFailure]


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    value: T | None = None
    kind: ErrorKind | None = None
    error: str | None = None
    user_errors: tuple[UserError, ...] = field(default_factory=tuple)
    remote_status: int | None = None
    remote_body: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is None

    @property
    def status_code(self) -> int:
        if self.kind is None:
            return 200
        return self.kind.status_code

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        error: str,
        *,
        user_errors: tuple[UserError, ...] = (),
        remote_status: int | None = None,
        remote_body: str | None = None,
    ) -> "OperationResult[T]":
        return cls(
            kind=kind,
            error=error,
            user_errors=user_errors,
            remote_status=remote_status,
            remote_body=remote_body,
        )

    @classmethod
    def from_exception(cls, exc: DeploymentError) -> "OperationResult[T]":
        return cls.failure(exc.kind, str(exc))

    @classmethod
    def from_remote(cls, failure: RemoteFailure, *, action: str) -> "OperationResult[T]":
        if isinstance(failure, DomainFailure):
            return cls.failure(
                ErrorKind.DOMAIN,
                f"{action} failed: {failure.summary}",
                user_errors=failure.user_errors,
            )
        if isinstance(failure, TransportFailure):
            return cls.failure(
                ErrorKind.TRANSPORT,
                failure.describe(action),
                remote_status=failure.status_code,
                remote_body=failure.body,
            )
        if isinstance(failure, ApiFailure):
            return cls.failure(ErrorKind.API, failure.message)
        raise TypeError(f"Unsupported remote failure: {failure!r}")
