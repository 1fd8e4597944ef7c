from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from theme_deployer.config import settings
from theme_deployer.credentials import StoreCredential
from theme_deployer.results import (
    ApiFailure,
    DomainFailure,
    Ok,
    RemoteResult,
    TransportFailure,
    UserError,
)

logger = logging.getLogger("shopify.gateway")


@dataclass(frozen=True)
class RemoteRequest:
    document: str
    root_field: str
    variables: dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> dict[str, Any]:
        return {"query": self.document, "variables": self.variables}


@dataclass(frozen=True)
class FormFile:
    field_name: str
    filename: str
    content: bytes
    content_type: str


class ShopifyAdminGateway:
    """Sends single Admin GraphQL requests and classifies what comes back.

    Nothing here raises for remote failures; every outcome is a ``RemoteResult``.
    Retries are left to the caller.
    """

    def __init__(
        self,
        *,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_version = api_version or settings.SHOPIFY_ADMIN_API_VERSION
        self._timeout = timeout if timeout is not None else settings.SHOPIFY_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def graphql_url(self, store_id: str) -> str:
        return f"https://{store_id}/admin/api/{self._api_version}/graphql.json"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def send(self, credential: StoreCredential, request: RemoteRequest) -> RemoteResult[dict[str, Any]]:
        url = self.graphql_url(credential.store_id)
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": credential.access_token,
        }
        try:
            async with self._client() as client:
                response = await client.post(url, json=request.as_payload(), headers=headers)
        except httpx.RequestError as exc:
            logger.warning(
                "shopify_graphql_network_error",
                extra={"shop": credential.store_id, "root_field": request.root_field, "error": str(exc)},
            )
            return TransportFailure(status_code=None, body=f"Network error while calling Shopify: {exc}")

        if not response.is_success:
            logger.warning(
                "shopify_graphql_http_error",
                extra={
                    "shop": credential.store_id,
                    "root_field": request.root_field,
                    "status_code": response.status_code,
                },
            )
            return TransportFailure(status_code=response.status_code, body=response.text)

        return self._classify_body(response, request=request, store_id=credential.store_id)

    @staticmethod
    def _classify_body(
        response: httpx.Response,
        *,
        request: RemoteRequest,
        store_id: str,
    ) -> RemoteResult[dict[str, Any]]:
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.warning(
                "shopify_graphql_invalid_json",
                extra={"shop": store_id, "root_field": request.root_field},
            )
            return ApiFailure(message="Shopify API returned invalid JSON")

        errors = body.get("errors")
        if errors:
            message = _first_error_message(errors)
            logger.warning(
                "shopify_graphql_api_error",
                extra={"shop": store_id, "root_field": request.root_field, "error": message},
            )
            return ApiFailure(message=message)

        data = body.get("data")
        root = data.get(request.root_field) if isinstance(data, dict) else None
        if root is None:
            logger.warning(
                "shopify_graphql_root_missing",
                extra={"shop": store_id, "root_field": request.root_field},
            )
            return ApiFailure(message=f"{request.root_field} missing in response")
        if not isinstance(root, dict):
            return ApiFailure(message=f"{request.root_field} response is invalid")

        user_errors = root.get("userErrors") or []
        if user_errors:
            parsed = tuple(UserError.from_payload(item) for item in user_errors)
            logger.info(
                "shopify_graphql_user_errors",
                extra={
                    "shop": store_id,
                    "root_field": request.root_field,
                    "user_errors": [item.describe() for item in parsed],
                },
            )
            return DomainFailure(user_errors=parsed)

        return Ok(root)

    async def post_form(
        self,
        *,
        url: str,
        fields: Sequence[tuple[str, str]],
        file: FormFile,
    ) -> RemoteResult[None]:
        # httpx writes plain data fields before file fields, so the binary
        # part always lands last in the multipart body. Repeated names keep
        # every value; httpx emits one part per list entry.
        data: dict[str, list[str]] = {}
        for name, value in fields:
            data.setdefault(name, []).append(value)
        files = {file.field_name: (file.filename, file.content, file.content_type)}
        try:
            async with self._client() as client:
                response = await client.post(url, data=data, files=files)
        except httpx.RequestError as exc:
            logger.warning("staged_upload_network_error", extra={"error": str(exc)})
            return TransportFailure(status_code=None, body=f"Network error while uploading file: {exc}")

        if not response.is_success:
            logger.warning(
                "staged_upload_http_error",
                extra={"status_code": response.status_code},
            )
            return TransportFailure(status_code=response.status_code, body=response.text)
        return Ok(None)


def _first_error_message(errors: Any) -> str:
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and isinstance(first.get("message"), str):
            return first["message"]
        return str(first)
    if isinstance(errors, str):
        return errors
    return f"Admin GraphQL errors: {errors}"
