"""FastAPI dependency factories for the job lifecycle collaborators."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from tunecraft.jobs.assets import AssetFetcher
from tunecraft.jobs.store import JobStore
from tunecraft.ledger.service import Ledger
from tunecraft.storage.db import get_session


def get_asset_fetcher() -> AssetFetcher:
    return AssetFetcher()


def get_ledger(session: Session = Depends(get_session)) -> Ledger:
    return Ledger(session)


def get_job_store(
    session: Session = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
    asset_fetcher: AssetFetcher = Depends(get_asset_fetcher),
) -> JobStore:
    return JobStore(session, ledger=ledger, asset_fetcher=asset_fetcher)
