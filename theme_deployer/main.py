from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from theme_deployer import themes
from theme_deployer.db import get_session, init_db
from theme_deployer.logging_config import configure_logging
from theme_deployer.results import OperationResult
from theme_deployer.schemas import (
    FileUploadRequest,
    FileUploadResponse,
    OperationResponse,
    ThemeCreateRequest,
    ThemeDeleteResponse,
    ThemeFilePayload,
    ThemeFilesRequest,
    ThemeFilesResponse,
    ThemeIdValue,
    ThemePayload,
    ThemeRenameRequest,
    ThemeResponse,
    ThemeStatusResponse,
    ThemeTargetRequest,
    ThemeUpdateRequest,
    UpsertedFilePayload,
    UserErrorPayload,
)
from theme_deployer.security import require_internal_api_token
from theme_deployer.shopify_api import ShopifyAdminGateway
from theme_deployer.staged_upload import upload_artifact

logger = logging.getLogger(__name__)

shopify_gateway = ShopifyAdminGateway()

# Endpoints whose failure bodies always carry their primary field as null.
_NULL_ON_FAILURE: dict[str, dict[str, Any]] = {
    "/api/file/upload": {"resourceUrl": None},
    "/api/theme/status": {"processing": None},
}


def get_gateway() -> ShopifyAdminGateway:
    return shopify_gateway


def _failure_fields(result: OperationResult[Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {"error": result.error}
    if result.user_errors:
        fields["userErrors"] = [UserErrorPayload(**item.as_dict()) for item in result.user_errors]
    if result.remote_status is not None:
        fields["remoteStatus"] = result.remote_status
    if result.remote_body:
        fields["remoteBody"] = result.remote_body
    return fields


def _respond(response: OperationResponse, status_code: int) -> ORJSONResponse:
    return ORJSONResponse(status_code=status_code, content=response.model_dump(exclude_unset=True))


def _theme_response(result: OperationResult[themes.ThemeSummary]) -> ORJSONResponse:
    if not result.ok:
        return _respond(ThemeResponse(**_failure_fields(result)), result.status_code)
    theme = result.value
    return _respond(ThemeResponse(theme=ThemePayload(id=theme.id, name=theme.name)), 200)


def _files_response(result: OperationResult[list[str]]) -> ORJSONResponse:
    if not result.ok:
        return _respond(ThemeFilesResponse(**_failure_fields(result)), result.status_code)
    upserted = [UpsertedFilePayload(filename=filename) for filename in result.value or []]
    return _respond(ThemeFilesResponse(upsertedFiles=upserted), 200)


def _file_inputs(files: list[ThemeFilePayload]) -> list[themes.ThemeFileInput]:
    return [item.to_input() for item in files]


router = APIRouter(prefix="/api", dependencies=[Depends(require_internal_api_token)])


@router.post("/file/upload", response_model=FileUploadResponse)
async def upload_file(
    payload: FileUploadRequest,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    result = await upload_artifact(
        session=session,
        gateway=gateway,
        shop=payload.shop,
        file_data=payload.fileData,
        filename=payload.filename,
        mime_type=payload.mimeType,
    )
    if not result.ok:
        return _respond(FileUploadResponse(resourceUrl=None, **_failure_fields(result)), result.status_code)
    return _respond(FileUploadResponse(resourceUrl=result.value), 200)


@router.post("/theme/create", response_model=ThemeResponse)
async def create_theme(
    payload: ThemeCreateRequest,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    result = await themes.create_theme(
        session=session,
        gateway=gateway,
        shop=payload.shop,
        source=payload.source,
        name=payload.name,
        role=payload.role,
    )
    return _theme_response(result)


@router.post("/theme/rename", response_model=ThemeResponse)
async def rename_theme(
    payload: ThemeRenameRequest,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    result = await themes.update_theme_metadata(
        session=session,
        gateway=gateway,
        shop=payload.shop,
        theme_id=payload.themeId,
        name=payload.name,
    )
    return _theme_response(result)


@router.post("/theme/files", response_model=ThemeFilesResponse)
async def upsert_theme_files(
    payload: ThemeFilesRequest,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    result = await themes.upsert_theme_files(
        session=session,
        gateway=gateway,
        shop=payload.shop,
        theme_id=payload.themeId,
        files=_file_inputs(payload.files),
    )
    return _files_response(result)


@router.post("/theme/update")
async def update_theme(
    payload: ThemeUpdateRequest,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    if payload.files is not None:
        files_result = await themes.upsert_theme_files(
            session=session,
            gateway=gateway,
            shop=payload.shop,
            theme_id=payload.themeId,
            files=_file_inputs(payload.files),
        )
        return _files_response(files_result)

    rename_result = await themes.update_theme_metadata(
        session=session,
        gateway=gateway,
        shop=payload.shop,
        theme_id=payload.themeId,
        name=payload.name or "",
    )
    return _theme_response(rename_result)


@router.post("/theme/delete", response_model=ThemeDeleteResponse)
async def delete_theme(
    payload: ThemeTargetRequest,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    result = await themes.delete_theme(
        session=session,
        gateway=gateway,
        shop=payload.shop,
        theme_id=payload.themeId,
    )
    if not result.ok:
        return _respond(ThemeDeleteResponse(**_failure_fields(result)), result.status_code)
    return _respond(ThemeDeleteResponse(deletedThemeId=result.value), 200)


async def _theme_status(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    theme_id: ThemeIdValue,
) -> ORJSONResponse:
    result = await themes.get_theme_processing_status(
        session=session,
        gateway=gateway,
        shop=shop,
        theme_id=theme_id,
    )
    if not result.ok:
        return _respond(ThemeStatusResponse(processing=None, **_failure_fields(result)), result.status_code)
    return _respond(ThemeStatusResponse(processing=result.value), 200)


@router.get("/theme/status", response_model=ThemeStatusResponse)
async def get_theme_status(
    shop: str | None = None,
    themeId: str | None = None,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    if not shop or not themeId:
        return _respond(
            ThemeStatusResponse(processing=None, error="Missing required parameters: themeId and shop"),
            400,
        )
    return await _theme_status(session=session, gateway=gateway, shop=shop, theme_id=themeId)


@router.post("/theme/status", response_model=ThemeStatusResponse)
async def post_theme_status(
    payload: ThemeTargetRequest,
    session: Session = Depends(get_session),
    gateway: ShopifyAdminGateway = Depends(get_gateway),
):
    return await _theme_status(session=session, gateway=gateway, shop=payload.shop, theme_id=payload.themeId)


def _describe_validation_errors(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        return "Invalid JSON"
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg") or "invalid value"
        parts.append(f"{location}: {message}" if location else message)
    return "Invalid request: " + "; ".join(parts)


@asynccontextmanager
async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Shopify Theme Deployer",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
        content = {**_NULL_ON_FAILURE.get(request.url.path, {}), "error": _describe_validation_errors(exc)}
        return ORJSONResponse(status_code=400, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> ORJSONResponse:
        content = {**_NULL_ON_FAILURE.get(request.url.path, {}), "error": str(exc.detail)}
        return ORJSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"error": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    app.include_router(router)
    return app


app = create_app()
