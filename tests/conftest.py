import os
import sys
from datetime import datetime
from pathlib import Path
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import delete

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("THEME_DEPLOYER_DB_URL", "sqlite:///./test_theme_deployer.db")
os.environ.setdefault("SHOPIFY_ADMIN_API_VERSION", "2025-10")
os.environ.setdefault("THEME_DEPLOYER_INTERNAL_API_TOKEN", "")

from theme_deployer.db import SessionLocal, init_db  # noqa: E402
from theme_deployer.models import ShopSession  # noqa: E402
from theme_deployer.shopify_api import ShopifyAdminGateway  # noqa: E402


@pytest.fixture()
def db_session():
    init_db()
    session = SessionLocal()
    session.execute(delete(ShopSession))
    session.commit()
    try:
        yield session
    finally:
        session.execute(delete(ShopSession))
        session.commit()
        session.close()


@pytest.fixture()
def add_shop_session(db_session):
    def _add(
        *,
        shop: str = "example.myshopify.com",
        access_token: str = "shpat_offline",
        expires: datetime | None = None,
        is_online: bool = False,
    ) -> ShopSession:
        row = ShopSession(
            id=f"offline_{shop}_{uuid4().hex}",
            shop=shop,
            is_online=is_online,
            access_token=access_token,
            scope="write_themes",
            expires=expires,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return _add


class RecordingTransport:
    """Collects outgoing requests and answers them from a handler."""

    def __init__(self, handler):
        self.requests: list[httpx.Request] = []
        self._handler = handler
        self.transport = httpx.MockTransport(self._dispatch)

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        return self._handler(request)


@pytest.fixture()
def make_gateway():
    def _make(handler) -> tuple[ShopifyAdminGateway, RecordingTransport]:
        recorder = RecordingTransport(handler)
        return ShopifyAdminGateway(api_version="2025-10", timeout=5.0, transport=recorder.transport), recorder

    return _make
