"""課金ルーター: プラン変更・解約・再開"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from seajourney.core.database import get_db
from seajourney.routers.deps import get_stripe_gateway
from seajourney.schemas.billing import (
    ChangePlanRequest, CancelSubscriptionRequest, ResumeSubscriptionRequest,
)
from seajourney.services import plan_change_service, subscription_service

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/change-plan")
def change_plan(
    req: ChangePlanRequest,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    """プラン変更 (アップグレードは即時、ダウングレードは期間終了時に予約)"""
    return plan_change_service.change_plan(
        db,
        gateway,
        subscription_id=req.subscription_id,
        price_id=req.price_id,
        user_id=req.user_id,
    )


@router.post("/cancel")
def cancel_subscription(
    req: CancelSubscriptionRequest,
    db: Session = Depends(get_db),
    gateway=Depends(get_stripe_gateway),
):
    return subscription_service.cancel_subscription(
        db, gateway, req.subscription_id, at_period_end=req.cancel_at_period_end
    )


@router.post("/resume")
def resume_subscription(
    req: ResumeSubscriptionRequest,
    gateway=Depends(get_stripe_gateway),
):
    return subscription_service.resume_subscription(gateway, req.subscription_id)
