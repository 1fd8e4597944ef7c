from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ShopSession(Base):
    """Stored Shopify app session, written by the installation flow.

    This service only ever reads rows from this table.
    """

    __tablename__ = "shop_sessions"

    id: Mapped[str] = mapped_column(String(length=255), primary_key=True)
    shop: Mapped[str] = mapped_column(String(length=255), nullable=False, index=True)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
