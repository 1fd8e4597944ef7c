from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from theme_deployer.themes import ThemeFileEncoding, ThemeFileInput

ThemeIdValue = int | str


class ThemeFilePayload(BaseModel):
    filename: str = ""
    content: str | None = None
    encoding: Literal["base64", "BASE64", "text", "TEXT"] | None = None

    def to_input(self) -> ThemeFileInput:
        return ThemeFileInput(
            filename=self.filename.strip(),
            content=self.content,  # type: ignore[arg-type]
            encoding=ThemeFileEncoding.parse(self.encoding),
        )


class FileUploadRequest(BaseModel):
    shop: str = Field(min_length=1)
    fileData: str = Field(min_length=1)
    filename: str | None = None
    mimeType: str | None = None


class ThemeCreateRequest(BaseModel):
    shop: str = Field(min_length=1)
    source: str = Field(min_length=1)
    name: str = Field(min_length=1)
    role: Literal["UNPUBLISHED", "DEVELOPMENT"] | None = None


class ThemeRenameRequest(BaseModel):
    shop: str = Field(min_length=1)
    themeId: ThemeIdValue
    name: str = Field(min_length=1)


class ThemeFilesRequest(BaseModel):
    shop: str = Field(min_length=1)
    themeId: ThemeIdValue
    files: list[ThemeFilePayload]


class ThemeUpdateRequest(BaseModel):
    shop: str = Field(min_length=1)
    themeId: ThemeIdValue
    name: str | None = None
    files: list[ThemeFilePayload] | None = None

    @model_validator(mode="after")
    def validate_update_kind(self) -> "ThemeUpdateRequest":
        has_name = self.name is not None
        has_files = self.files is not None
        if has_name == has_files:
            raise ValueError("Exactly one of name or files is required")
        return self


class ThemeTargetRequest(BaseModel):
    shop: str = Field(min_length=1)
    themeId: ThemeIdValue


class UserErrorPayload(BaseModel):
    field: list[str] | None = None
    message: str


class ThemePayload(BaseModel):
    id: str
    name: str


class UpsertedFilePayload(BaseModel):
    filename: str


class OperationResponse(BaseModel):
    error: str | None = None
    userErrors: list[UserErrorPayload] | None = None
    remoteStatus: int | None = None
    remoteBody: str | None = None


class ThemeResponse(OperationResponse):
    theme: ThemePayload | None = None


class ThemeFilesResponse(OperationResponse):
    upsertedFiles: list[UpsertedFilePayload] | None = None


class ThemeDeleteResponse(OperationResponse):
    deletedThemeId: str | None = None


class ThemeStatusResponse(OperationResponse):
    processing: bool | None = None


class FileUploadResponse(OperationResponse):
    resourceUrl: str | None = None
