from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.db import get_db
from schemas.payment import WebhookAck
from services.paystack import SIGNATURE_HEADER
from services.reconciliation import handle_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payment")
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Paystack event receiver. The signature covers the exact bytes sent, so
    the body is read raw and never re-serialized before verification.
    """
    raw_payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    result = await run_in_threadpool(handle_webhook, db, raw_payload, signature)
    ack = WebhookAck(detail=result.message, outcome=result.outcome.value, order_id=result.order_id)
    return JSONResponse(status_code=result.http_status, content=ack.model_dump(exclude_none=True))
