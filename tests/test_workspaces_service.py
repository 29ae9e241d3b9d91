from __future__ import annotations

from datetime import datetime, timedelta, timezone
import uuid

import pytest
from sqlalchemy import func, select

from tunecraft.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from tunecraft.jobs.states import JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_STATUS_PROCESSING
from tunecraft.jobs.store import JobStore
from tunecraft.storage.models import Job, Workspace
from tunecraft.workspaces import service as workspace_service


def _add_job(session, workspace: Workspace, *, status: str, credits: int = 10, duration: float = 0.0) -> Job:
    job = Job(
        id=str(uuid.uuid4()),
        kind="generate",
        owner_id=workspace.owner_id,
        workspace_id=workspace.id,
        status=status,
        credits_reserved=credits,
        duration=duration,
    )
    session.add(job)
    session.commit()
    return job


def _default_count(session, owner_id: str) -> int:
    return int(
        session.scalar(
            select(func.count(Workspace.id)).where(Workspace.owner_id == owner_id, Workspace.is_default.is_(True))
        )
    )


def test_ensure_default_workspace_is_idempotent(session, make_user) -> None:
    user = make_user()

    first = workspace_service.ensure_default_workspace(session, user.id)
    second = workspace_service.ensure_default_workspace(session, user.id)

    assert first.id == second.id
    assert first.is_default is True
    assert first.name == "My Workspace"
    assert _default_count(session, user.id) == 1


def test_setting_default_leaves_exactly_one_default(session, make_user) -> None:
    user = make_user()
    default = workspace_service.ensure_default_workspace(session, user.id)
    studio = workspace_service.create_workspace(session, owner_id=user.id, name="Studio")
    demos = workspace_service.create_workspace(session, owner_id=user.id, name="Demos", is_default=True)

    assert _default_count(session, user.id) == 1
    session.refresh(default)
    assert default.is_default is False
    assert demos.is_default is True

    workspace_service.set_default_workspace(session, owner_id=user.id, workspace_id=studio.id)
    for workspace in (default, studio, demos):
        session.refresh(workspace)

    assert _default_count(session, user.id) == 1
    assert studio.is_default is True
    assert workspace_service.get_default_workspace(session, user.id).id == studio.id


def test_duplicate_workspace_name_is_rejected(session, make_user) -> None:
    user = make_user()
    workspace_service.create_workspace(session, owner_id=user.id, name="Beats")

    with pytest.raises(ConflictError):
        workspace_service.create_workspace(session, owner_id=user.id, name="beats")


def test_default_workspace_cannot_be_trashed_or_deleted(session, make_user) -> None:
    user = make_user()
    default = workspace_service.ensure_default_workspace(session, user.id)

    with pytest.raises(ValidationError):
        workspace_service.trash_workspace(session, workspace_id=default.id, owner_id=user.id)
    with pytest.raises(ValidationError):
        workspace_service.permanent_delete_workspace(session, workspace_id=default.id, owner_id=user.id)

    assert session.get(Workspace, default.id).is_trashed is False


def test_trash_restore_and_permanent_delete(session, make_user) -> None:
    user = make_user()
    workspace_service.ensure_default_workspace(session, user.id)
    scratch = workspace_service.create_workspace(session, owner_id=user.id, name="Scratch")
    _add_job(session, scratch, status=JOB_STATUS_COMPLETED)
    _add_job(session, scratch, status=JOB_STATUS_FAILED)

    trashed = workspace_service.trash_workspace(session, workspace_id=scratch.id, owner_id=user.id)
    assert trashed.is_trashed is True
    assert trashed.trashed_at is not None
    assert [item.id for item in workspace_service.list_trashed_workspaces(session, user.id)] == [scratch.id]
    assert scratch.id not in {item.id for item in workspace_service.list_workspaces_for_user(session, user.id)}

    restored = workspace_service.restore_workspace(session, workspace_id=scratch.id, owner_id=user.id)
    assert restored.is_trashed is False

    deleted_jobs = workspace_service.permanent_delete_workspace(session, workspace_id=scratch.id, owner_id=user.id)
    assert deleted_jobs == 2
    assert session.get(Workspace, scratch.id) is None
    assert session.scalar(select(func.count(Job.id)).where(Job.workspace_id == scratch.id)) == 0


def test_recompute_stats_does_not_depend_on_event_order(session, make_user) -> None:
    user = make_user()
    left = workspace_service.create_workspace(session, owner_id=user.id, name="Left")
    right = workspace_service.create_workspace(session, owner_id=user.id, name="Right")

    specs = [
        (JOB_STATUS_COMPLETED, 10, 120.0),
        (JOB_STATUS_FAILED, 15, 0.0),
        (JOB_STATUS_PROCESSING, 5, 0.0),
        (JOB_STATUS_COMPLETED, 20, 60.5),
    ]
    for status, credits, duration in specs:
        _add_job(session, left, status=status, credits=credits, duration=duration)
    for status, credits, duration in reversed(specs):
        _add_job(session, right, status=status, credits=credits, duration=duration)

    left_stats = workspace_service.recompute_stats(session, left.id)
    right_stats = workspace_service.recompute_stats(session, right.id)

    assert left_stats.total_jobs == right_stats.total_jobs == 4
    assert left_stats.completed_jobs == right_stats.completed_jobs == 2
    assert left_stats.total_duration == right_stats.total_duration == 180.5
    assert left_stats.credits_used == right_stats.credits_used == 35

    session.refresh(left)
    assert left.stats_credits_used == 35
    assert left.stats_total_jobs == 4


def test_remove_job_detaches_and_recomputes_stats(session, make_user) -> None:
    user = make_user()
    workspace = workspace_service.create_workspace(session, owner_id=user.id, name="Album")
    kept = _add_job(session, workspace, status=JOB_STATUS_COMPLETED, credits=10, duration=90.0)
    removed = _add_job(session, workspace, status=JOB_STATUS_COMPLETED, credits=15, duration=30.0)
    workspace_service.recompute_stats(session, workspace.id)

    stats = workspace_service.remove_job(session, workspace, removed)

    assert removed.workspace_id is None
    assert kept.workspace_id == workspace.id
    assert stats.total_jobs == 1
    assert stats.completed_jobs == 1
    assert stats.total_duration == 90.0
    assert stats.credits_used == 10
    session.refresh(workspace)
    assert workspace.stats_total_jobs == 1
    assert workspace.stats_credits_used == 10


def test_deleting_a_job_updates_workspace_stats(session, make_user) -> None:
    user = make_user()
    workspace = workspace_service.create_workspace(session, owner_id=user.id, name="Demos")
    _add_job(session, workspace, status=JOB_STATUS_COMPLETED, credits=10, duration=45.0)
    doomed = _add_job(session, workspace, status=JOB_STATUS_COMPLETED, credits=20, duration=60.0)
    workspace_service.recompute_stats(session, workspace.id)

    JobStore(session).delete_job(doomed.id, user.id)

    assert session.get(Job, doomed.id) is None
    session.refresh(workspace)
    assert workspace.stats_total_jobs == 1
    assert workspace.stats_total_duration == 45.0
    assert workspace.stats_credits_used == 10


def test_collaborator_roles_map_to_fixed_permissions(session, make_user) -> None:
    owner = make_user()
    editor = make_user()
    viewer = make_user()
    stranger = make_user()
    workspace = workspace_service.create_workspace(session, owner_id=owner.id, name="Band")

    workspace_service.add_collaborator(
        session,
        workspace_id=workspace.id,
        actor_id=owner.id,
        identifier=editor.email,
        role="editor",
    )
    workspace_service.add_collaborator(
        session,
        workspace_id=workspace.id,
        actor_id=owner.id,
        identifier=viewer.username,
    )

    assert workspace_service.has_permission(workspace, owner.id, workspace_service.CAP_INVITE_USERS) is True
    assert workspace_service.has_permission(workspace, editor.id, workspace_service.CAP_CREATE_JOBS) is True
    assert workspace_service.has_permission(workspace, editor.id, workspace_service.CAP_DELETE_JOBS) is False
    assert workspace_service.has_permission(workspace, viewer.id, workspace_service.CAP_CREATE_JOBS) is False
    assert workspace_service.has_permission(workspace, stranger.id, workspace_service.CAP_CREATE_JOBS) is False

    with pytest.raises(PermissionDeniedError):
        workspace_service.get_accessible_workspace(
            session,
            workspace_id=workspace.id,
            user_id=viewer.id,
            capability=workspace_service.CAP_CREATE_JOBS,
        )
    with pytest.raises(NotFoundError):
        workspace_service.get_accessible_workspace(session, workspace_id=workspace.id, user_id=stranger.id)

    promoted = workspace_service.update_collaborator_role(
        session,
        workspace_id=workspace.id,
        actor_id=owner.id,
        collaborator_user_id=viewer.id,
        role="admin",
    )
    assert promoted.can_delete_jobs is True
    assert promoted.can_invite_users is True


def test_invalid_collaborator_invites_are_rejected(session, make_user) -> None:
    owner = make_user()
    member = make_user()
    workspace = workspace_service.create_workspace(session, owner_id=owner.id, name="Crew")

    with pytest.raises(ValidationError):
        workspace_service.add_collaborator(
            session,
            workspace_id=workspace.id,
            actor_id=owner.id,
            identifier=owner.email,
        )
    with pytest.raises(ValidationError):
        workspace_service.add_collaborator(
            session,
            workspace_id=workspace.id,
            actor_id=owner.id,
            identifier=member.email,
            role="superuser",
        )

    workspace_service.add_collaborator(session, workspace_id=workspace.id, actor_id=owner.id, identifier=member.email)
    with pytest.raises(ConflictError):
        workspace_service.add_collaborator(
            session,
            workspace_id=workspace.id,
            actor_id=owner.id,
            identifier=member.email,
        )
    with pytest.raises(PermissionDeniedError):
        workspace_service.add_collaborator(
            session,
            workspace_id=workspace.id,
            actor_id=member.id,
            identifier="someone@tunecraft.test",
        )


def test_share_link_resolves_until_it_expires(session, make_user) -> None:
    owner = make_user()
    workspace = workspace_service.create_workspace(session, owner_id=owner.id, name="Showcase")

    shared = workspace_service.share_workspace(
        session,
        workspace_id=workspace.id,
        owner_id=owner.id,
        allow_downloads=True,
        expires_in_days=7,
    )
    token = shared.share_token
    assert token and len(token) == 64
    assert workspace_service.get_shared_workspace(session, token).id == workspace.id

    shared.share_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    session.commit()
    with pytest.raises(NotFoundError):
        workspace_service.get_shared_workspace(session, token)

    workspace_service.unshare_workspace(session, workspace_id=workspace.id, owner_id=owner.id)
    with pytest.raises(NotFoundError):
        workspace_service.get_shared_workspace(session, token)
