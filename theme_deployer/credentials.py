from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from theme_deployer.models import ShopSession
from theme_deployer.results import DeploymentError, ErrorKind
from theme_deployer.security import normalize_shop_domain

logger = logging.getLogger("shopify.credentials")


class CredentialFailure(str, Enum):
    NOT_INSTALLED = "not_installed"
    EXPIRED = "expired"


_CREDENTIAL_MESSAGES: dict[CredentialFailure, str] = {
    CredentialFailure.NOT_INSTALLED: "No session found for shop. Please install the app first.",
    CredentialFailure.EXPIRED: "Session expired. Please reinstall the app.",
}


class CredentialError(DeploymentError):
    def __init__(self, *, reason: CredentialFailure, shop: str) -> None:
        kind = ErrorKind.NOT_INSTALLED if reason is CredentialFailure.NOT_INSTALLED else ErrorKind.EXPIRED
        super().__init__(_CREDENTIAL_MESSAGES[reason], kind=kind)
        self.reason = reason
        self.shop = shop


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class StoreCredential:
    store_id: str
    access_token: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        return _as_utc(self.expires_at) < current

    def __repr__(self) -> str:
        return f"StoreCredential(store_id={self.store_id!r}, expires_at={self.expires_at!r})"


def resolve_store_credential(
    session: Session,
    store_ref: str,
    *,
    now: datetime | None = None,
) -> StoreCredential:
    store_id = normalize_shop_domain(store_ref)
    stored = session.scalars(
        select(ShopSession)
        .where(ShopSession.shop == store_id, ShopSession.is_online.is_(False))
        .order_by(ShopSession.expires.desc().nulls_first())
        .limit(1)
    ).first()

    if stored is None:
        logger.info("shop_session_missing", extra={"shop": store_id})
        raise CredentialError(reason=CredentialFailure.NOT_INSTALLED, shop=store_id)

    credential = StoreCredential(
        store_id=store_id,
        access_token=stored.access_token,
        expires_at=stored.expires,
    )
    if credential.is_expired(now):
        logger.info(
            "shop_session_expired",
            extra={"shop": store_id, "expires_at": credential.expires_at.isoformat()},
        )
        raise CredentialError(reason=CredentialFailure.EXPIRED, shop=store_id)

    logger.debug("shop_session_resolved", extra={"shop": store_id, "session_id": stored.id})
    return credential
