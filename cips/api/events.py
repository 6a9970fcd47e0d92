"""Inbound platform events (already verified by the transport in front of us)."""

import logging

from fastapi import APIRouter, Query, status

from cips.api.deps import PipelineDep, account_or_404
from cips.config import DEFAULT_ACCOUNT_ID
from cips.schemas.events import AcceptedResponse, ChatEvent, MessageEvent

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/events/message", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def receive_message(
    body: MessageEvent,
    pipeline: PipelineDep,
    account_id: str = Query(DEFAULT_ACCOUNT_ID),
):
    """Queue persistence and attachment registration for one message."""
    account_or_404(pipeline, account_id)
    accepted = pipeline.handle_message_event(account_id, body)
    return AcceptedResponse(accepted=accepted, account_id=account_id, message_id=body.message.message_id)


@router.post("/events/chat", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def receive_chat_event(
    body: ChatEvent,
    pipeline: PipelineDep,
    account_id: str = Query(DEFAULT_ACCOUNT_ID),
):
    account_or_404(pipeline, account_id)
    accepted = pipeline.handle_chat_event(account_id, body)
    return AcceptedResponse(accepted=accepted, account_id=account_id)
