from __future__ import annotations

import logging

from theme_deployer.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    resolved_level = (level or settings.THEME_DEPLOYER_LOG_LEVEL).upper()
    if not any(getattr(handler, "_theme_deployer", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._theme_deployer = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(resolved_level)
    logging.getLogger("httpx").setLevel(logging.WARNING)
