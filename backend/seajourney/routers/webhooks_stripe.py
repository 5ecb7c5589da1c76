"""Stripe Webhook ルーター"""
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from seajourney.core.config import settings
from seajourney.core.database import get_db
from seajourney.core.logging import get_logger
from seajourney.models.processed_stripe_event import ProcessedStripeEvent
from seajourney.routers.deps import get_stripe_gateway
from seajourney.services import stripe_service, subscription_service

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    """Stripe Webhook エンドポイント (署名検証)"""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = stripe_service.as_dict(stripe_service.construct_webhook_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        ))
    except Exception as e:
        logger.error(f"Stripe webhook署名検証失敗: {e}")
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid signature"})

    # DB・Stripe呼び出しは同期処理なのでスレッドプールで実行
    return await run_in_threadpool(process_event, db, gateway, event)


def process_event(db: Session, gateway, event: dict) -> dict:
    """検証済みイベントの処理 (同一イベントIDは1度だけ)"""
    event_id = event["id"]
    event_type = event["type"]
    data = event["data"]["object"]

    # 冪等性チェック: 同一イベントの重複処理を防止
    if _is_event_processed(db, event_id):
        logger.info(f"Stripe webhook重複スキップ: {event_id} ({event_type})")
        return {"received": True, "duplicate": True}

    try:
        if event_type == "checkout.session.completed":
            subscription_service.handle_checkout_completed(db, gateway, data)
        elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
            subscription_service.sync_subscription(db, gateway, data)
        elif event_type == "customer.subscription.deleted":
            subscription_service.sync_subscription(db, gateway, data, deleted=True)
        else:
            logger.info(f"未処理のStripeイベント: {event_type}")
            return {"received": True}
    except Exception as e:
        db.rollback()
        logger.error(f"Stripe webhook処理エラー: {event_type} - {e}")
        raise

    # 処理済みとして記録
    _record_processed_event(db, event_id, event_type)
    return {"received": True}


# =========================================================
# 冪等性ヘルパー
# =========================================================

def _is_event_processed(db: Session, event_id: str) -> bool:
    return db.query(ProcessedStripeEvent).filter(
        ProcessedStripeEvent.event_id == event_id
    ).first() is not None


def _record_processed_event(db: Session, event_id: str, event_type: str):
    db.add(ProcessedStripeEvent(event_id=event_id, event_type=event_type))
    try:
        db.commit()
    except IntegrityError:
        # 同一イベントの同時配信
        db.rollback()
        logger.info(f"Stripe webhook処理済み記録が既存: {event_id}")
