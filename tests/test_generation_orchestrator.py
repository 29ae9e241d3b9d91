from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from tunecraft.core.errors import (
    InsufficientCreditsError,
    NotFoundError,
    PermissionDeniedError,
    ProviderError,
    ValidationError,
)
from tunecraft.generation.service import GenerationOrchestrator, validate_params
from tunecraft.jobs.states import JOB_STATUS_FAILED, JOB_STATUS_GENERATING, MAX_JOB_RETRIES
from tunecraft.jobs.store import CallbackOutcome, JobStore
from tunecraft.ledger.service import ENTRY_REFUND, ENTRY_RESERVE, Ledger
from tunecraft.providers import MockGenerationProvider
from tunecraft.storage.models import CreditTransaction, Job, Workspace
from tunecraft.workspaces import service as workspace_service


def _orchestrator(session, provider=None) -> GenerationOrchestrator:
    store = JobStore(session, ledger=Ledger(session))
    return GenerationOrchestrator(session, provider=provider or MockGenerationProvider(), store=store)


def _job_count(session) -> int:
    return int(session.scalar(select(func.count(Job.id))))


def test_submit_reserves_credits_and_tracks_job(session, make_user) -> None:
    user = make_user(credits=100)
    provider = MockGenerationProvider()
    orchestrator = _orchestrator(session, provider)

    result = orchestrator.submit(
        user_id=user.id,
        kind="generate",
        params={"prompt": "  synthwave drive  ", "style": "synthwave", "model_version": "v4.5", "title": ""},
    )

    assert result.credits_used == 15
    assert result.status == JOB_STATUS_GENERATING
    assert result.provider_task_id.startswith("mock-generate-")

    job = session.get(Job, result.job_id)
    assert job.provider_task_id == result.provider_task_id
    assert job.credits_reserved == 15
    assert job.prompt == "synthwave drive"
    assert job.title == "Untitled"
    assert job.workspace_id == result.workspace_id
    assert "title" not in json.loads(job.params_json)

    reservation = session.scalar(
        select(CreditTransaction).where(CreditTransaction.entry_type == ENTRY_RESERVE)
    )
    assert reservation.idempotency_key == job.id
    assert Ledger(session).get_balance(user.id) == 85

    assert provider.submissions == [
        ("generate", {"prompt": "synthwave drive", "style": "synthwave", "model_version": "v4.5"})
    ]
    default = workspace_service.get_default_workspace(session, user.id)
    assert default is not None and default.id == result.workspace_id


def test_insufficient_credits_creates_no_job(session, make_user) -> None:
    user = make_user(credits=5)
    provider = MockGenerationProvider()

    with pytest.raises(InsufficientCreditsError):
        _orchestrator(session, provider).submit(user_id=user.id, kind="generate", params={"prompt": "anything"})

    assert _job_count(session) == 0
    assert provider.submissions == []
    assert Ledger(session).get_balance(user.id) == 5


def test_missing_required_fields_fail_before_reservation(session, make_user) -> None:
    user = make_user(credits=100)

    with pytest.raises(ValidationError) as exc_info:
        _orchestrator(session).submit(user_id=user.id, kind="extend", params={"prompt": "longer"})

    assert exc_info.value.details["missing"] == ["audio_id"]
    assert Ledger(session).get_balance(user.id) == 100
    assert _job_count(session) == 0


def test_validate_params_accepts_any_of_group() -> None:
    validate_params("wav", {"audio_url": "https://cdn.provider.test/a.mp3"})
    validate_params("video", {"audio_id": "abc"})
    with pytest.raises(ValidationError):
        validate_params("boost", {"audio_url": "https://cdn.provider.test/a.mp3"})


def test_unknown_kind_is_a_validation_error(session, make_user) -> None:
    user = make_user(credits=100)
    with pytest.raises(ValidationError):
        _orchestrator(session).submit(user_id=user.id, kind="remix", params={"prompt": "x"})


def test_kind_aliases_are_canonicalized(session, make_user) -> None:
    user = make_user(credits=100)
    result = _orchestrator(session).submit(
        user_id=user.id,
        kind="timestamped_lyrics",
        params={"audio_id": "clip-1"},
    )
    assert session.get(Job, result.job_id).kind == "timestamped-lyrics"
    assert result.credits_used == 3


def test_provider_submit_failure_refunds_and_fails_job(session, make_user) -> None:
    user = make_user(credits=100)
    orchestrator = _orchestrator(session, MockGenerationProvider(fail_with="upstream overloaded"))

    with pytest.raises(ProviderError):
        orchestrator.submit(user_id=user.id, kind="generate", params={"prompt": "rock anthem"})

    job = session.scalar(select(Job))
    assert job.status == JOB_STATUS_FAILED
    assert job.error_message == "upstream overloaded"
    assert job.provider_task_id is None
    assert Ledger(session).get_balance(user.id) == 100

    refunds = session.scalars(select(CreditTransaction).where(CreditTransaction.entry_type == ENTRY_REFUND)).all()
    assert [entry.idempotency_key for entry in refunds] == [job.id]


def test_explicit_workspace_requires_create_permission(session, make_user) -> None:
    owner = make_user(credits=100)
    viewer = make_user(credits=100)
    workspace = workspace_service.create_workspace(session, owner_id=owner.id, name="Shared")
    workspace_service.add_collaborator(session, workspace_id=workspace.id, actor_id=owner.id, identifier=viewer.email)

    with pytest.raises(PermissionDeniedError):
        _orchestrator(session).submit(
            user_id=viewer.id,
            kind="generate",
            params={"prompt": "duet"},
            workspace_id=workspace.id,
        )
    assert Ledger(session).get_balance(viewer.id) == 100

    result = _orchestrator(session).submit(
        user_id=owner.id,
        kind="generate",
        params={"prompt": "duet"},
        workspace_id=workspace.id,
    )
    assert result.workspace_id == workspace.id
    session.refresh(workspace)
    assert session.get(Workspace, workspace.id).stats_total_jobs == 1


def test_retry_creates_child_job_for_failed_parent(session, make_user) -> None:
    user = make_user(credits=100)
    orchestrator = _orchestrator(session)
    first = orchestrator.submit(user_id=user.id, kind="generate", params={"prompt": "retry me"})

    with pytest.raises(ValidationError):
        orchestrator.retry(job_id=first.job_id, user_id=user.id)

    orchestrator.store.apply_callback(
        first.provider_task_id,
        CallbackOutcome(task_id=first.provider_task_id, status=JOB_STATUS_FAILED, error_message="boom"),
    )
    retried = orchestrator.retry(job_id=first.job_id, user_id=user.id)

    child = session.get(Job, retried.job_id)
    assert child.parent_job_id == first.job_id
    assert child.version == 2
    assert child.retry_count == 1
    assert child.prompt == "retry me"
    assert Ledger(session).get_balance(user.id) == 90


def test_retry_limit_is_enforced(session, make_user) -> None:
    user = make_user(credits=100)
    orchestrator = _orchestrator(session)
    result = orchestrator.submit(user_id=user.id, kind="generate", params={"prompt": "limit"})
    orchestrator.store.apply_callback(
        result.provider_task_id,
        CallbackOutcome(task_id=result.provider_task_id, status=JOB_STATUS_FAILED),
    )
    job = session.get(Job, result.job_id)
    job.retry_count = MAX_JOB_RETRIES
    session.commit()

    with pytest.raises(ValidationError):
        orchestrator.retry(job_id=result.job_id, user_id=user.id)


def test_extend_links_to_the_job_named_by_audio_id(session, make_user) -> None:
    user = make_user(credits=100)
    orchestrator = _orchestrator(session)
    original = orchestrator.submit(user_id=user.id, kind="generate", params={"prompt": "first take"})

    extended = orchestrator.submit(user_id=user.id, kind="extend", params={"audio_id": original.job_id})

    child = session.get(Job, extended.job_id)
    assert child.parent_job_id == original.job_id
    assert child.version == 2
    assert child.source_audio_id == original.job_id


def test_cover_accepts_explicit_parent_job_id(session, make_user) -> None:
    user = make_user(credits=100)
    provider = MockGenerationProvider()
    orchestrator = _orchestrator(session, provider)
    original = orchestrator.submit(user_id=user.id, kind="generate", params={"prompt": "first take"})

    cover = orchestrator.submit(
        user_id=user.id,
        kind="cover",
        params={"audio_url": "https://cdn.provider.test/take.mp3", "parent_job_id": original.job_id},
    )

    child = session.get(Job, cover.job_id)
    assert child.parent_job_id == original.job_id
    assert "parent_job_id" not in json.loads(child.params_json)
    assert "parent_job_id" not in provider.submissions[-1][1]


def test_extend_of_a_provider_clip_has_no_parent(session, make_user) -> None:
    user = make_user(credits=100)
    result = _orchestrator(session).submit(user_id=user.id, kind="extend", params={"audio_id": "clip-123"})

    child = session.get(Job, result.job_id)
    assert child.parent_job_id is None
    assert child.version == 1


def test_derivative_of_another_users_job_is_rejected(session, make_user) -> None:
    owner = make_user(credits=100)
    stranger = make_user(credits=100)
    orchestrator = _orchestrator(session)
    original = orchestrator.submit(user_id=owner.id, kind="generate", params={"prompt": "private"})

    with pytest.raises(NotFoundError):
        orchestrator.submit(
            user_id=stranger.id,
            kind="cover",
            params={"audio_url": "https://cdn.provider.test/take.mp3", "parent_job_id": original.job_id},
        )
    assert Ledger(session).get_balance(stranger.id) == 100

    unlinked = orchestrator.submit(user_id=stranger.id, kind="extend", params={"audio_id": original.job_id})
    assert session.get(Job, unlinked.job_id).parent_job_id is None


def test_failed_job_can_only_be_retried_once(session, make_user) -> None:
    user = make_user(credits=100)
    orchestrator = _orchestrator(session)
    first = orchestrator.submit(user_id=user.id, kind="generate", params={"prompt": "one shot"})
    orchestrator.store.apply_callback(
        first.provider_task_id,
        CallbackOutcome(task_id=first.provider_task_id, status=JOB_STATUS_FAILED),
    )

    retried = orchestrator.retry(job_id=first.job_id, user_id=user.id)
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.retry(job_id=first.job_id, user_id=user.id)

    assert excinfo.value.details["retry_job_id"] == retried.job_id
    assert _job_count(session) == 2
    assert Ledger(session).get_balance(user.id) == 90
