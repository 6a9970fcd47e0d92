"""Health endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    pipeline = request.app.state.pipeline
    return {
        "status": "ok",
        "accounts": [account.account_id for account in pipeline.accounts if account.enabled],
        "pending_writes": len(pipeline.write_queue.pending_keys()),
    }
