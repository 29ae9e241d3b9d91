"""Pydantic schemas for music, lyrics, audio and video generation requests."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class GenerationBaseRequest(BaseModel):
    workspace_id: Optional[str] = Field(default=None, max_length=36)
    title: Optional[str] = Field(default=None, max_length=200)

    def to_params(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"workspace_id"}, exclude_none=True)


class MusicGenerateRequest(GenerationBaseRequest):
    prompt: str = Field(min_length=1, max_length=3000)
    style: Optional[str] = Field(default=None, max_length=500)
    model_version: Optional[str] = Field(default=None, max_length=16)
    instrumental: bool = False
    custom_mode: bool = True
    negative_tags: Optional[str] = Field(default=None, max_length=500)
    vocal_gender: Optional[str] = Field(default=None, pattern=r"^[mf]$")
    style_weight: Optional[float] = Field(default=None, ge=0, le=1)
    weirdness_constraint: Optional[float] = Field(default=None, ge=0, le=1)
    audio_weight: Optional[float] = Field(default=None, ge=0, le=1)


class MusicExtendRequest(GenerationBaseRequest):
    audio_id: str = Field(min_length=1, max_length=128)
    parent_job_id: Optional[str] = Field(default=None, max_length=36)
    prompt: Optional[str] = Field(default=None, max_length=3000)
    style: Optional[str] = Field(default=None, max_length=500)
    continue_at: Optional[float] = Field(default=None, ge=0)
    model_version: Optional[str] = Field(default=None, max_length=16)


class MusicCoverRequest(GenerationBaseRequest):
    audio_url: str = Field(min_length=1, max_length=1024)
    audio_id: Optional[str] = Field(default=None, max_length=128)
    parent_job_id: Optional[str] = Field(default=None, max_length=36)
    prompt: Optional[str] = Field(default=None, max_length=3000)
    style: Optional[str] = Field(default=None, max_length=500)
    model_version: Optional[str] = Field(default=None, max_length=16)
    instrumental: bool = False


class LyricsGenerateRequest(GenerationBaseRequest):
    prompt: str = Field(min_length=1, max_length=3000)
    style: Optional[str] = Field(default=None, max_length=500)
    theme: Optional[str] = Field(default=None, max_length=200)


class AudioSourceRequest(GenerationBaseRequest):
    audio_url: Optional[str] = Field(default=None, max_length=1024)
    audio_id: Optional[str] = Field(default=None, max_length=128)


class BoostRequest(GenerationBaseRequest):
    audio_url: str = Field(min_length=1, max_length=1024)
    style_prompt: str = Field(min_length=1, max_length=1000)
    intensity: float = Field(default=0.5, ge=0.1, le=1.0)

    def to_params(self) -> Dict[str, Any]:
        params = super().to_params()
        params["prompt"] = params.pop("style_prompt")
        return params


class InstrumentalRequest(GenerationBaseRequest):
    audio_url: str = Field(min_length=1, max_length=1024)
    instrumental_prompt: str = Field(min_length=1, max_length=1000)
    style: Optional[str] = Field(default=None, max_length=500)
    blend_ratio: float = Field(default=0.5, ge=0.1, le=1.0)

    def to_params(self) -> Dict[str, Any]:
        params = super().to_params()
        params["prompt"] = params.pop("instrumental_prompt")
        return params


class VocalsRequest(GenerationBaseRequest):
    audio_url: str = Field(min_length=1, max_length=1024)
    vocals_prompt: str = Field(min_length=1, max_length=1000)
    voice_style: Optional[str] = Field(default=None, max_length=50)
    blend_ratio: float = Field(default=0.5, ge=0.1, le=1.0)

    def to_params(self) -> Dict[str, Any]:
        params = super().to_params()
        params["prompt"] = params.pop("vocals_prompt")
        return params


class VideoGenerateRequest(GenerationBaseRequest):
    audio_url: Optional[str] = Field(default=None, max_length=1024)
    audio_id: Optional[str] = Field(default=None, max_length=128)
    video_style: Optional[str] = Field(default=None, max_length=100)
    theme: Optional[str] = Field(default=None, max_length=200)
    duration_seconds: Optional[int] = Field(default=None, ge=5, le=600)
    resolution: Optional[str] = Field(default=None, max_length=16)


class GenerationResponse(BaseModel):
    success: bool = True
    job_id: str
    provider_task_id: str
    status: str
    credits_used: int
    workspace_id: Optional[str] = None
