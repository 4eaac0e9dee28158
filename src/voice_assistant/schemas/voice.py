"""Pydantic models for the voice adapter endpoints."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class InferRequest(BaseModel):
    """Body of ``POST /infer``."""

    text: Any = None
    use_local_model: bool = Field(default=False, alias="useLocalModel")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InferResponse(BaseModel):
    response: str
    cancelled: Optional[bool] = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SynthesizeRequest(BaseModel):
    """Body of ``POST /synthesize``."""

    text: Any = None
    use_browser_tts: bool = Field(default=False, alias="useBrowserTTS")
    use_gtts: bool = Field(default=False, alias="useGTTS")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SynthesizeResponse(BaseModel):
    """One of the three synthesis outcomes; unset fields are omitted."""

    use_browser_tts: Optional[bool] = Field(default=None, alias="useBrowserTTS")
    use_gtts: Optional[bool] = Field(default=None, alias="useGTTS")
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    text: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TranscribeResponse(BaseModel):
    text: str


class ErrorResponse(BaseModel):
    error: str


__all__ = [
    "ErrorResponse",
    "InferRequest",
    "InferResponse",
    "SynthesizeRequest",
    "SynthesizeResponse",
    "TranscribeResponse",
]
