from __future__ import annotations

from pathlib import Path

from tunecraft.storage.db import Base, load_models


MIGRATION_PATH = Path("migrations/versions/20261018_0001_tunecraft_core.py")


def test_core_migration_declares_every_mapped_table() -> None:
    load_models()
    source = MIGRATION_PATH.read_text(encoding="utf-8")

    for table_name in Base.metadata.tables:
        assert f"\"{table_name}\"," in source
        assert f"op.drop_table(\"{table_name}\")" in source


def test_core_migration_declares_integrity_constraints() -> None:
    source = MIGRATION_PATH.read_text(encoding="utf-8")

    assert "uq_jobs_provider_task_id" in source
    assert "uq_credit_transactions_key_type" in source
    assert "uq_job_logs_job_sequence" in source
    assert "uq_workspace_collaborators_workspace_user" in source
    assert "uq_workspaces_share_token" in source
    assert "ck_users_credit_balance_non_negative" in source
    assert "ck_jobs_progress_range" in source
    assert "ix_jobs_owner_created_at" in source
    assert "down_revision = None" in source
