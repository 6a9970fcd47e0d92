"""Admin endpoints - manual directory sync and drain triggers."""

from fastapi import APIRouter, HTTPException, status

from cips.api.deps import PipelineDep, account_or_404
from cips.auth.middleware import AdminDep

router = APIRouter()


def _started_or_409(started: bool, what: str) -> dict:
    if not started:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{what} already running for this account",
        )
    return {"started": True}


@router.post("/accounts/{account_id}/directory-sync", status_code=status.HTTP_202_ACCEPTED)
async def trigger_directory_sync(account_id: str, pipeline: PipelineDep, _admin: AdminDep):
    """Start a directory sync for the account."""
    account = account_or_404(pipeline, account_id)
    if account.store_url is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Account has no store configured")
    return _started_or_409(pipeline.run_directory_sync(account_id), "Directory sync")


@router.post("/accounts/{account_id}/resources/drain", status_code=status.HTTP_202_ACCEPTED)
async def drain_resources(account_id: str, pipeline: PipelineDep, _admin: AdminDep):
    account_or_404(pipeline, account_id)
    return _started_or_409(pipeline.schedule_downloads(account_id), "Resource download")


@router.post("/accounts/{account_id}/extractions/drain", status_code=status.HTTP_202_ACCEPTED)
async def drain_extractions(account_id: str, pipeline: PipelineDep, _admin: AdminDep):
    account_or_404(pipeline, account_id)
    return _started_or_409(pipeline.schedule_extraction(account_id), "Extraction")
