import logging
import time
import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from pdfrag.api.deps import (current_account, get_chat_gateway, get_records, get_settings,
                             get_usage_meter)
from pdfrag.config.settings import AppSettings
from pdfrag.core.auth import ensure_thread_owner
from pdfrag.core.billing.usage_meter import UsageMeter
from pdfrag.core.chat.gateway import ChatGateway
from pdfrag.models.billing import Account, UsageSummary
from pdfrag.models.chat import ChatRequest, ChatThread, ChatTurn, ThreadCreateRequest
from pdfrag.storage.base import RecordStore

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/chat", summary="Stream an answer grounded in one document")
def chat(
    request_data: ChatRequest,
    account: Account = Depends(current_account),
    gateway: ChatGateway = Depends(get_chat_gateway)
):
    """
    Gate-checks the turn before anything is streamed. A blocked account gets 402
    with a checkout link; otherwise the answer is relayed as server-sent events.
    """
    turn = gateway.open_turn(account.account_id, request_data)
    if turn.blocked:
        return JSONResponse(
            status_code=402,
            content={
                "error": "Free tier usage exhausted. Subscribe to continue.",
                "usage": turn.decision.usage,
                "ceiling": turn.decision.ceiling,
                "checkoutUrl": turn.decision.checkout_url
            }
        )
    return StreamingResponse(
        turn.events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Turn-Id": turn.turn_id}
    )

@router.post("/threads", response_model=ChatThread, summary="Start a chat thread bound to a document")
def create_thread(
    request_data: ThreadCreateRequest,
    account: Account = Depends(current_account),
    records: RecordStore = Depends(get_records)
):
    document = records.get_document(request_data.document_id)
    if document is None or (document.owner_id is not None and document.owner_id != account.account_id):
        raise HTTPException(status_code=404, detail="Document not found.")

    thread = ChatThread(
        thread_id=str(uuid.uuid4()),
        owner_id=account.account_id,
        doc_id=document.doc_id,
        title=request_data.title,
        created_at=int(time.time() * 1000)
    )
    records.save_thread(thread)
    logger.info(f"Thread {thread.thread_id} created for account {account.account_id} on {document.doc_id}")
    return thread

@router.get("/threads", response_model=List[ChatThread], summary="List the caller's threads")
def list_threads(
    document_id: Optional[str] = Query(default=None, alias="documentId"),
    account: Account = Depends(current_account),
    records: RecordStore = Depends(get_records)
):
    return records.list_threads(account.account_id, document_id)

@router.get("/threads/{thread_id}/messages", response_model=List[ChatTurn], summary="List a thread's messages")
def list_messages(
    thread_id: str,
    account: Account = Depends(current_account),
    records: RecordStore = Depends(get_records)
):
    ensure_thread_owner(records, account.account_id, thread_id)
    return records.list_turns(thread_id)

@router.get("/usage", response_model=UsageSummary, summary="Current period usage for the caller")
def get_usage(
    account: Account = Depends(current_account),
    meter: UsageMeter = Depends(get_usage_meter),
    records: RecordStore = Depends(get_records),
    settings: AppSettings = Depends(get_settings)
):
    period = meter.current_period()
    state = records.get_billing_state(account.account_id)
    return UsageSummary(
        account_id=account.account_id,
        period_key=period,
        units=meter.get(account.account_id, period),
        ceiling=settings.billing.free_tier_units,
        has_subscription=state.has_subscription
    )
