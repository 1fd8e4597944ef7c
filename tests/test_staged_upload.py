from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from theme_deployer.credentials import StoreCredential
from theme_deployer.results import ErrorKind, TransportFailure
from theme_deployer.staged_upload import (
    NoStagedTargetError,
    PipelineState,
    PipelineStateError,
    StagedUploadFailed,
    StagedUploadPipeline,
    decode_file_data,
    upload_artifact,
)

CREDENTIAL = StoreCredential(store_id="example.myshopify.com", access_token="shpat_token")
UPLOAD_URL = "https://shopify-staged-uploads.storage.googleapis.com/"
RESOURCE_URL = "https://shopify-staged-uploads.storage.googleapis.com/tmp/123/theme.zip"


def _staged_target_payload() -> dict:
    return {
        "resourceUrl": RESOURCE_URL,
        "url": UPLOAD_URL,
        "parameters": [
            {"name": "Content-Type", "value": "application/zip"},
            {"name": "key", "value": "tmp/123/theme.zip"},
            {"name": "policy", "value": "policy-blob"},
        ],
    }


def _staging_handler(staged_payload: dict, *, upload_status: int = 204, upload_text: str = ""):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/graphql.json"):
            return httpx.Response(200, json={"data": {"stagedUploadsCreate": staged_payload}})
        return httpx.Response(upload_status, text=upload_text)

    return handler


def _pipeline(gateway, payload: bytes = b"PK-theme-archive") -> StagedUploadPipeline:
    return StagedUploadPipeline(
        gateway=gateway,
        credential=CREDENTIAL,
        payload=payload,
        filename="theme.zip",
        mime_type="application/zip",
    )


def test_pipeline_stages_then_transfers_and_returns_resource_url(make_gateway):
    gateway, recorder = make_gateway(
        _staging_handler({"stagedTargets": [_staged_target_payload()], "userErrors": []})
    )
    pipeline = _pipeline(gateway)

    resource_url = asyncio.run(pipeline.run())

    assert resource_url == RESOURCE_URL
    assert pipeline.state is PipelineState.TRANSFERRED
    assert len(recorder.requests) == 2

    stage_request, upload_request = recorder.requests
    variables = json.loads(stage_request.content)["variables"]
    assert variables == {
        "input": [
            {
                "filename": "theme.zip",
                "mimeType": "application/zip",
                "fileSize": str(len(b"PK-theme-archive")),
                "resource": "FILE",
                "httpMethod": "POST",
            }
        ]
    }

    assert str(upload_request.url) == UPLOAD_URL
    body = upload_request.content
    assert body.index(b'name="key"') < body.index(b'name="policy"') < body.index(b'name="file"')
    assert b'filename="theme.zip"' in body


def test_pipeline_empty_target_list_fails_without_transfer(make_gateway):
    gateway, recorder = make_gateway(_staging_handler({"stagedTargets": [], "userErrors": []}))
    pipeline = _pipeline(gateway)

    with pytest.raises(NoStagedTargetError) as exc_info:
        asyncio.run(pipeline.run())

    assert exc_info.value.kind is ErrorKind.API
    assert str(exc_info.value) == "Failed to get staged upload target"
    assert pipeline.state is PipelineState.FAILED
    assert len(recorder.requests) == 1


def test_pipeline_user_errors_fail_distinctly_without_transfer(make_gateway):
    gateway, recorder = make_gateway(
        _staging_handler(
            {
                "stagedTargets": [],
                "userErrors": [{"field": ["input", "0", "fileSize"], "message": "File size is too large"}],
            }
        )
    )
    pipeline = _pipeline(gateway)

    with pytest.raises(StagedUploadFailed) as exc_info:
        asyncio.run(pipeline.run())

    assert not isinstance(exc_info.value, NoStagedTargetError)
    assert exc_info.value.kind is ErrorKind.DOMAIN
    assert "input.0.fileSize: File size is too large" in str(exc_info.value)
    assert pipeline.state is PipelineState.FAILED
    assert len(recorder.requests) == 1


def test_pipeline_transfer_failure_carries_response_body(make_gateway):
    gateway, recorder = make_gateway(
        _staging_handler(
            {"stagedTargets": [_staged_target_payload()], "userErrors": []},
            upload_status=403,
            upload_text="<Error><Code>AccessDenied</Code></Error>",
        )
    )
    pipeline = _pipeline(gateway)

    with pytest.raises(StagedUploadFailed) as exc_info:
        asyncio.run(pipeline.run())

    failure = exc_info.value.failure
    assert isinstance(failure, TransportFailure)
    assert failure.status_code == 403
    assert "AccessDenied" in failure.body
    assert pipeline.state is PipelineState.FAILED
    assert len(recorder.requests) == 2


def test_pipeline_refuses_transfer_before_stage(make_gateway):
    gateway, recorder = make_gateway(lambda request: httpx.Response(500))
    pipeline = _pipeline(gateway)

    with pytest.raises(PipelineStateError):
        asyncio.run(pipeline.transfer())

    assert recorder.requests == []


def test_pipeline_is_single_use(make_gateway):
    gateway, recorder = make_gateway(
        _staging_handler({"stagedTargets": [_staged_target_payload()], "userErrors": []})
    )
    pipeline = _pipeline(gateway)
    asyncio.run(pipeline.run())

    with pytest.raises(PipelineStateError):
        asyncio.run(pipeline.run())

    assert len(recorder.requests) == 2


def test_decode_file_data_strips_data_url_prefix():
    encoded = base64.b64encode(b"zip-bytes").decode("ascii")

    assert decode_file_data(f"data:application/zip;base64,{encoded}") == b"zip-bytes"
    assert decode_file_data(encoded) == b"zip-bytes"


def test_upload_artifact_returns_resource_url(db_session, add_shop_session, make_gateway):
    add_shop_session()
    gateway, recorder = make_gateway(
        _staging_handler({"stagedTargets": [_staged_target_payload()], "userErrors": []})
    )

    result = asyncio.run(
        upload_artifact(
            session=db_session,
            gateway=gateway,
            shop="https://Example.myshopify.com/",
            file_data=base64.b64encode(b"zip-bytes").decode("ascii"),
        )
    )

    assert result.ok
    assert result.value == RESOURCE_URL
    assert result.status_code == 200
    assert len(recorder.requests) == 2
    staged_input = json.loads(recorder.requests[0].content)["variables"]["input"][0]
    assert staged_input["mimeType"] == "application/zip"
    assert staged_input["filename"].startswith("theme-")
    assert staged_input["filename"].endswith(".zip")


def test_upload_artifact_rejects_invalid_base64_without_network(db_session, add_shop_session, make_gateway):
    add_shop_session()

    def fail(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no network call expected")

    gateway, recorder = make_gateway(fail)

    result = asyncio.run(
        upload_artifact(session=db_session, gateway=gateway, shop="example.myshopify.com", file_data="not base64!!")
    )

    assert result.kind is ErrorKind.INPUT
    assert result.status_code == 400
    assert result.error == "Invalid file data. Expected base64 encoded string."
    assert recorder.requests == []


def test_upload_artifact_expired_credential_skips_network(db_session, add_shop_session, make_gateway):
    add_shop_session(expires=datetime.now(timezone.utc) - timedelta(minutes=5))

    def fail(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no network call expected")

    gateway, recorder = make_gateway(fail)

    result = asyncio.run(
        upload_artifact(
            session=db_session,
            gateway=gateway,
            shop="example.myshopify.com",
            file_data=base64.b64encode(b"zip").decode("ascii"),
        )
    )

    assert result.kind is ErrorKind.EXPIRED
    assert result.status_code == 401
    assert recorder.requests == []


def test_upload_artifact_reports_missing_target_as_api_error(db_session, add_shop_session, make_gateway):
    add_shop_session()
    gateway, recorder = make_gateway(_staging_handler({"stagedTargets": [], "userErrors": []}))

    result = asyncio.run(
        upload_artifact(
            session=db_session,
            gateway=gateway,
            shop="example.myshopify.com",
            file_data=base64.b64encode(b"zip").decode("ascii"),
            filename="custom.zip",
        )
    )

    assert result.kind is ErrorKind.API
    assert result.status_code == 500
    assert result.error == "Failed to get staged upload target"
    assert len(recorder.requests) == 1


def test_pipeline_transfer_requires_staged_target(make_gateway):
    gateway, recorder = make_gateway(lambda request: httpx.Response(204))
    pipeline = _pipeline(gateway)
    pipeline.state = PipelineState.STAGED

    with pytest.raises(PipelineStateError, match="without a staged target"):
        asyncio.run(pipeline.transfer())

    assert recorder.requests == []
