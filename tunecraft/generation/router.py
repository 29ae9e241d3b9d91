"""Generation API routes for music, lyrics, audio post-processing and video."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from tunecraft.auth.dependencies import require_auth_context
from tunecraft.auth.jwt import AuthContext
from tunecraft.generation.service import GenerationOrchestrator, GenerationResult
from tunecraft.jobs.dependencies import get_job_store
from tunecraft.jobs.states import (
    KIND_BOOST,
    KIND_COVER,
    KIND_EXTEND,
    KIND_GENERATE,
    KIND_INSTRUMENTAL,
    KIND_LYRICS,
    KIND_SEPARATE,
    KIND_TIMESTAMPED_LYRICS,
    KIND_VIDEO,
    KIND_VOCALS,
    KIND_WAV,
)
from tunecraft.jobs.store import JobStore
from tunecraft.providers import GenerationProvider, get_generation_provider
from tunecraft.schemas.generation import (
    AudioSourceRequest,
    BoostRequest,
    GenerationBaseRequest,
    GenerationResponse,
    InstrumentalRequest,
    LyricsGenerateRequest,
    MusicCoverRequest,
    MusicExtendRequest,
    MusicGenerateRequest,
    VideoGenerateRequest,
    VocalsRequest,
)
from tunecraft.storage.db import get_session


router = APIRouter(tags=["generation"])


def get_orchestrator(
    session: Session = Depends(get_session),
    store: JobStore = Depends(get_job_store),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(session, provider=provider, store=store)


def _response(result: GenerationResult) -> GenerationResponse:
    return GenerationResponse(
        job_id=result.job_id,
        provider_task_id=result.provider_task_id,
        status=result.status,
        credits_used=result.credits_used,
        workspace_id=result.workspace_id,
    )


def _submit(
    orchestrator: GenerationOrchestrator,
    auth: AuthContext,
    kind: str,
    payload: GenerationBaseRequest,
) -> GenerationResponse:
    result = orchestrator.submit(
        user_id=auth.user_id,
        kind=kind,
        params=payload.to_params(),
        workspace_id=payload.workspace_id,
    )
    return _response(result)


@router.post("/music/generate", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def generate_music(
    payload: MusicGenerateRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_GENERATE, payload)


@router.post("/music/extend", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def extend_music(
    payload: MusicExtendRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_EXTEND, payload)


@router.post("/music/cover", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def cover_music(
    payload: MusicCoverRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_COVER, payload)


@router.post("/lyrics/generate", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def generate_lyrics(
    payload: LyricsGenerateRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_LYRICS, payload)


@router.post("/lyrics/timestamped", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def timestamped_lyrics(
    payload: AudioSourceRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_TIMESTAMPED_LYRICS, payload)


@router.post("/audio/wav", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def convert_to_wav(
    payload: AudioSourceRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_WAV, payload)


@router.post("/audio/separate", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def separate_vocals(
    payload: AudioSourceRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_SEPARATE, payload)


@router.post("/audio/boost", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def boost_style(
    payload: BoostRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_BOOST, payload)


@router.post("/audio/instrumental", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def add_instrumental(
    payload: InstrumentalRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_INSTRUMENTAL, payload)


@router.post("/audio/vocals", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def add_vocals(
    payload: VocalsRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_VOCALS, payload)


@router.post("/video/generate", response_model=GenerationResponse, status_code=status.HTTP_201_CREATED)
def generate_video(
    payload: VideoGenerateRequest,
    auth: AuthContext = Depends(require_auth_context),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationResponse:
    return _submit(orchestrator, auth, KIND_VIDEO, payload)
