from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from theme_deployer.config import settings
from theme_deployer.credentials import StoreCredential, resolve_store_credential
from theme_deployer.results import (
    DeploymentError,
    ErrorKind,
    InputError,
    Ok,
    OperationResult,
    RemoteFailure,
)
from theme_deployer.shopify_api import FormFile, RemoteRequest, ShopifyAdminGateway

logger = logging.getLogger("shopify.staged_upload")

UPLOAD_FILE_FIELD = "file"

_DATA_URL_PREFIX_RE = re.compile(r"^data:[^,]*,")
_WHITESPACE_RE = re.compile(r"\s+")

STAGED_UPLOADS_CREATE = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
    stagedUploadsCreate(input: $input) {
        stagedTargets {
            resourceUrl
            url
            parameters {
                name
                value
            }
        }
        userErrors {
            field
            message
        }
    }
}
"""


class NoStagedTargetError(DeploymentError):
    kind = ErrorKind.API

    def __init__(self) -> None:
        super().__init__("Failed to get staged upload target")


class PipelineStateError(RuntimeError):
    pass


class StagedUploadFailed(DeploymentError):
    def __init__(self, failure: RemoteFailure, *, step: str) -> None:
        self.failure = failure
        self.step = step
        result = OperationResult.from_remote(failure, action=step)
        super().__init__(result.error or step, kind=result.kind)


@dataclass(frozen=True)
class StagedUploadParameter:
    name: str
    value: str


@dataclass(frozen=True)
class StagedTarget:
    resource_url: str
    upload_url: str
    parameters: tuple[StagedUploadParameter, ...]

    @classmethod
    def from_payload(cls, payload: Any) -> "StagedTarget":
        if not isinstance(payload, dict):
            raise DeploymentError("stagedUploadsCreate returned an invalid staged target", kind=ErrorKind.API)
        resource_url = payload.get("resourceUrl")
        upload_url = payload.get("url")
        if not isinstance(resource_url, str) or not resource_url:
            raise DeploymentError("Staged upload target is missing resourceUrl", kind=ErrorKind.API)
        if not isinstance(upload_url, str) or not upload_url:
            raise DeploymentError("Staged upload target is missing url", kind=ErrorKind.API)
        parameters = tuple(
            StagedUploadParameter(name=str(item.get("name")), value=str(item.get("value") or ""))
            for item in payload.get("parameters") or []
            if isinstance(item, dict) and item.get("name")
        )
        return cls(resource_url=resource_url, upload_url=upload_url, parameters=parameters)


class PipelineState(str, Enum):
    PENDING = "pending"
    STAGED = "staged"
    TRANSFERRED = "transferred"
    FAILED = "failed"


class StagedUploadPipeline:
    """Stage-then-transfer for one artifact.

    Each instance moves PENDING -> STAGED -> TRANSFERRED exactly once, or ends in
    FAILED. A staged target is single-use, so neither step is ever repeated.
    """

    def __init__(
        self,
        *,
        gateway: ShopifyAdminGateway,
        credential: StoreCredential,
        payload: bytes,
        filename: str,
        mime_type: str,
    ) -> None:
        self._gateway = gateway
        self._credential = credential
        self._payload = payload
        self._filename = filename
        self._mime_type = mime_type
        self.state = PipelineState.PENDING
        self.target: StagedTarget | None = None

    def _require_state(self, expected: PipelineState, step: str) -> None:
        if self.state is not expected:
            raise PipelineStateError(f"Cannot {step} while pipeline is {self.state.value}")

    def _fail(self, exc: DeploymentError) -> DeploymentError:
        self.state = PipelineState.FAILED
        return exc

    async def stage(self) -> StagedTarget:
        self._require_state(PipelineState.PENDING, "stage")
        request = RemoteRequest(
            document=STAGED_UPLOADS_CREATE,
            root_field="stagedUploadsCreate",
            variables={
                "input": [
                    {
                        "filename": self._filename,
                        "mimeType": self._mime_type,
                        "fileSize": str(len(self._payload)),
                        "resource": "FILE",
                        "httpMethod": "POST",
                    }
                ]
            },
        )
        logger.info(
            "staged_upload_requested",
            extra={
                "shop": self._credential.store_id,
                "upload_filename": self._filename,
                "size": len(self._payload),
            },
        )
        result = await self._gateway.send(self._credential, request)
        if not isinstance(result, Ok):
            raise self._fail(StagedUploadFailed(result, step="stagedUploadsCreate"))

        targets = result.value.get("stagedTargets") or []
        if not targets:
            logger.warning("staged_upload_no_target", extra={"shop": self._credential.store_id})
            raise self._fail(NoStagedTargetError())
        try:
            target = StagedTarget.from_payload(targets[0])
        except DeploymentError as exc:
            raise self._fail(exc) from exc

        self.target = target
        self.state = PipelineState.STAGED
        return target

    async def transfer(self) -> str:
        self._require_state(PipelineState.STAGED, "transfer")
        target = self.target
        if target is None:
            raise PipelineStateError("Cannot transfer without a staged target")
        logger.info(
            "staged_upload_transfer_started",
            extra={"shop": self._credential.store_id, "upload_filename": self._filename},
        )
        result = await self._gateway.post_form(
            url=target.upload_url,
            fields=[(param.name, param.value) for param in target.parameters],
            file=FormFile(
                field_name=UPLOAD_FILE_FIELD,
                filename=self._filename,
                content=self._payload,
                content_type=self._mime_type,
            ),
        )
        if not isinstance(result, Ok):
            raise self._fail(StagedUploadFailed(result, step="Staged file transfer"))

        self.state = PipelineState.TRANSFERRED
        logger.info(
            "staged_upload_transferred",
            extra={"shop": self._credential.store_id, "resource_url": target.resource_url},
        )
        return target.resource_url

    async def run(self) -> str:
        await self.stage()
        return await self.transfer()


def decode_file_data(file_data: str) -> bytes:
    cleaned = _WHITESPACE_RE.sub("", _DATA_URL_PREFIX_RE.sub("", (file_data or "").strip(), count=1))
    if not cleaned:
        raise InputError("Invalid file data. Expected base64 encoded string.")
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputError("Invalid file data. Expected base64 encoded string.") from exc


def default_upload_filename() -> str:
    return f"theme-{int(time.time() * 1000)}.zip"


async def upload_artifact(
    *,
    session: Session,
    gateway: ShopifyAdminGateway,
    shop: str,
    file_data: str,
    filename: str | None = None,
    mime_type: str | None = None,
) -> OperationResult[str]:
    try:
        payload = decode_file_data(file_data)
        final_filename = (filename or "").strip() or default_upload_filename()
        final_mime_type = (mime_type or "").strip() or settings.THEME_UPLOAD_DEFAULT_MIME_TYPE
        credential = resolve_store_credential(session, shop)
        pipeline = StagedUploadPipeline(
            gateway=gateway,
            credential=credential,
            payload=payload,
            filename=final_filename,
            mime_type=final_mime_type,
        )
        resource_url = await pipeline.run()
    except StagedUploadFailed as exc:
        logger.warning("staged_upload_failed", extra={"shop": shop, "step": exc.step, "error": str(exc)})
        return OperationResult.from_remote(exc.failure, action=exc.step)
    except DeploymentError as exc:
        return OperationResult.from_exception(exc)
    except Exception as exc:
        logger.exception("staged_upload_unexpected_error", extra={"shop": shop})
        return OperationResult.failure(ErrorKind.UNKNOWN, str(exc) or "Unknown error")

    return OperationResult.success(resource_url)
