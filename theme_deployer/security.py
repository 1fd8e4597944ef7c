from __future__ import annotations

import hmac
import re

from fastapi import Header, HTTPException, status

from theme_deployer.config import settings
from theme_deployer.results import InputError

THEME_GID_PREFIX = "gid://shopify/OnlineStoreTheme/"

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_NUMERIC_ID_RE = re.compile(r"^[0-9]+$")


def normalize_shop_domain(shop: str) -> str:
    normalized = _SCHEME_RE.sub("", (shop or "").strip())
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    normalized = normalized.lower()
    if not normalized:
        raise InputError("shop must be a non-empty shop domain")
    return normalized


def theme_gid(theme_id: int | str) -> str:
    if isinstance(theme_id, bool):
        raise InputError("themeId must be a numeric theme id")
    if isinstance(theme_id, int):
        if theme_id < 0:
            raise InputError("themeId must be a numeric theme id")
        return f"{THEME_GID_PREFIX}{theme_id}"

    cleaned = str(theme_id).strip()
    if cleaned.startswith(THEME_GID_PREFIX):
        numeric_part = cleaned[len(THEME_GID_PREFIX):]
        if _NUMERIC_ID_RE.fullmatch(numeric_part):
            return cleaned
    elif _NUMERIC_ID_RE.fullmatch(cleaned):
        return f"{THEME_GID_PREFIX}{cleaned}"
    raise InputError(f"themeId must be a numeric theme id, got {theme_id!r}")


def require_internal_api_token(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> None:
    expected = settings.THEME_DEPLOYER_INTERNAL_API_TOKEN
    if expected is None:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer authorization header",
        )
    token = authorization[7:].strip()
    if not hmac.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid internal API token",
        )
