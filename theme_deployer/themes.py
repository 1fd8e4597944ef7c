from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from theme_deployer.credentials import resolve_store_credential
from theme_deployer.results import (
    DeploymentError,
    ErrorKind,
    InputError,
    Ok,
    OperationResult,
)
from theme_deployer.security import theme_gid
from theme_deployer.shopify_api import RemoteRequest, ShopifyAdminGateway

logger = logging.getLogger("shopify.themes")

T = TypeVar("T")

_CREATABLE_THEME_ROLES = {"UNPUBLISHED", "DEVELOPMENT"}

THEME_CREATE = """
mutation themeCreate($source: URL!, $name: String!, $role: ThemeRole) {
    themeCreate(source: $source, name: $name, role: $role) {
        theme {
            id
            name
            role
        }
        userErrors {
            field
            message
        }
    }
}
"""

THEME_UPDATE = """
mutation themeUpdate($id: ID!, $input: OnlineStoreThemeInput!) {
    themeUpdate(id: $id, input: $input) {
        theme {
            id
            name
            role
        }
        userErrors {
            field
            message
        }
    }
}
"""

THEME_FILES_UPSERT = """
mutation themeFilesUpsert($files: [OnlineStoreThemeFilesUpsertFileInput!]!, $themeId: ID!) {
    themeFilesUpsert(files: $files, themeId: $themeId) {
        upsertedThemeFiles {
            filename
        }
        userErrors {
            field
            message
        }
    }
}
"""

THEME_DELETE = """
mutation themeDelete($id: ID!) {
    themeDelete(id: $id) {
        deletedThemeId
        userErrors {
            field
            message
        }
    }
}
"""

THEME_PROCESSING_STATUS = """
query getThemeStatus($id: ID!) {
    theme(id: $id) {
        id
        processing
    }
}
"""


class ThemeFileEncoding(str, Enum):
    TEXT = "TEXT"
    BASE64 = "BASE64"

    @classmethod
    def parse(cls, value: Any) -> "ThemeFileEncoding":
        if value is None or isinstance(value, cls):
            return value or cls.TEXT
        normalized = str(value).strip().upper()
        if not normalized:
            return cls.TEXT
        try:
            return cls(normalized)
        except ValueError as exc:
            raise InputError(f"Unsupported file encoding: {value!r}") from exc


@dataclass(frozen=True)
class ThemeFileInput:
    filename: str
    content: str
    encoding: ThemeFileEncoding = ThemeFileEncoding.TEXT

    def as_graphql_input(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "body": {"type": self.encoding.value, "value": self.content},
        }


@dataclass(frozen=True)
class ThemeSummary:
    id: str
    name: str
    role: str | None = None


def _require_text(value: Any, label: str) -> str:
    cleaned = value.strip() if isinstance(value, str) else ""
    if not cleaned:
        raise InputError(f"{label} must be a non-empty string")
    return cleaned


def _coerce_theme(root: dict[str, Any], *, action: str) -> ThemeSummary:
    theme = root.get("theme")
    if not isinstance(theme, dict):
        raise DeploymentError(f"{action} response is missing theme", kind=ErrorKind.API)
    theme_id = theme.get("id")
    name = theme.get("name")
    if not isinstance(theme_id, str) or not theme_id:
        raise DeploymentError(f"{action} response is missing theme.id", kind=ErrorKind.API)
    if not isinstance(name, str):
        raise DeploymentError(f"{action} response is missing theme.name", kind=ErrorKind.API)
    role = theme.get("role")
    return ThemeSummary(id=theme_id, name=name, role=role if isinstance(role, str) else None)


async def _perform(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    action: str,
    build_request: Callable[[], RemoteRequest],
    parse: Callable[[dict[str, Any]], T],
) -> OperationResult[T]:
    try:
        request = build_request()
        credential = resolve_store_credential(session, shop)
        result = await gateway.send(credential, request)
        if not isinstance(result, Ok):
            outcome: OperationResult[T] = OperationResult.from_remote(result, action=action)
            logger.warning(
                "theme_operation_failed",
                extra={"shop": credential.store_id, "action": action, "error": outcome.error},
            )
            return outcome
        value = parse(result.value)
    except DeploymentError as exc:
        return OperationResult.from_exception(exc)
    except Exception as exc:
        logger.exception("theme_operation_unexpected_error", extra={"shop": shop, "action": action})
        return OperationResult.failure(ErrorKind.UNKNOWN, str(exc) or "Unknown error")

    logger.info("theme_operation_succeeded", extra={"shop": credential.store_id, "action": action})
    return OperationResult.success(value)


async def create_theme(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    source: str,
    name: str,
    role: str | None = None,
) -> OperationResult[ThemeSummary]:
    def build() -> RemoteRequest:
        variables: dict[str, Any] = {
            "source": _require_text(source, "source"),
            "name": _require_text(name, "name"),
        }
        if role is not None:
            normalized_role = role.strip().upper()
            if normalized_role not in _CREATABLE_THEME_ROLES:
                raise InputError(f"role must be one of {', '.join(sorted(_CREATABLE_THEME_ROLES))}")
            variables["role"] = normalized_role
        return RemoteRequest(document=THEME_CREATE, root_field="themeCreate", variables=variables)

    return await _perform(
        session=session,
        gateway=gateway,
        shop=shop,
        action="Create theme",
        build_request=build,
        parse=lambda root: _coerce_theme(root, action="themeCreate"),
    )


async def update_theme_metadata(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    theme_id: int | str,
    name: str,
) -> OperationResult[ThemeSummary]:
    def build() -> RemoteRequest:
        return RemoteRequest(
            document=THEME_UPDATE,
            root_field="themeUpdate",
            variables={"id": theme_gid(theme_id), "input": {"name": _require_text(name, "name")}},
        )

    return await _perform(
        session=session,
        gateway=gateway,
        shop=shop,
        action="Update theme",
        build_request=build,
        parse=lambda root: _coerce_theme(root, action="themeUpdate"),
    )


def _validate_files(files: Sequence[ThemeFileInput] | None) -> list[ThemeFileInput]:
    if not files:
        raise InputError("files must be a non-empty array")
    validated: list[ThemeFileInput] = []
    for item in files:
        if not isinstance(item, ThemeFileInput) or not item.filename or item.content is None:
            raise InputError("Each file must have 'filename' and 'content' fields")
        validated.append(item)
    return validated


def _parse_upserted(root: dict[str, Any]) -> list[str]:
    upserted = root.get("upsertedThemeFiles") or []
    if not isinstance(upserted, list):
        raise DeploymentError("themeFilesUpsert response is missing upsertedThemeFiles", kind=ErrorKind.API)
    return [
        item["filename"]
        for item in upserted
        if isinstance(item, dict) and isinstance(item.get("filename"), str)
    ]


async def upsert_theme_files(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    theme_id: int | str,
    files: Sequence[ThemeFileInput],
) -> OperationResult[list[str]]:
    def build() -> RemoteRequest:
        validated = _validate_files(files)
        return RemoteRequest(
            document=THEME_FILES_UPSERT,
            root_field="themeFilesUpsert",
            variables={
                "themeId": theme_gid(theme_id),
                "files": [item.as_graphql_input() for item in validated],
            },
        )

    return await _perform(
        session=session,
        gateway=gateway,
        shop=shop,
        action="Update theme files",
        build_request=build,
        parse=_parse_upserted,
    )


def _parse_deleted(root: dict[str, Any]) -> str:
    deleted_id = root.get("deletedThemeId")
    if not isinstance(deleted_id, str) or not deleted_id:
        raise DeploymentError("themeDelete response is missing deletedThemeId", kind=ErrorKind.API)
    return deleted_id


async def delete_theme(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    theme_id: int | str,
) -> OperationResult[str]:
    def build() -> RemoteRequest:
        return RemoteRequest(document=THEME_DELETE, root_field="themeDelete", variables={"id": theme_gid(theme_id)})

    return await _perform(
        session=session,
        gateway=gateway,
        shop=shop,
        action="Delete theme",
        build_request=build,
        parse=_parse_deleted,
    )


def _parse_processing(root: dict[str, Any]) -> bool:
    processing = root.get("processing")
    if not isinstance(processing, bool):
        raise DeploymentError("theme response is missing processing state", kind=ErrorKind.API)
    return processing


async def get_theme_processing_status(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    theme_id: int | str,
) -> OperationResult[bool]:
    """Read whether Shopify is still processing a theme.

    The result carries no value on failure; the HTTP layer renders that as
    ``processing: null`` so callers can tell it apart from ``False``.
    """

    def build() -> RemoteRequest:
        return RemoteRequest(
            document=THEME_PROCESSING_STATUS,
            root_field="theme",
            variables={"id": theme_gid(theme_id)},
        )

    return await _perform(
        session=session,
        gateway=gateway,
        shop=shop,
        action="Get theme status",
        build_request=build,
        parse=_parse_processing,
    )
