"""購読状態の同期 (Webhook・解約・再開・予約適用)"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from seajourney.core.config import settings
from seajourney.core.errors import AppError, BadRequestError, PaymentProviderError
from seajourney.core.logging import get_logger
from seajourney.models.user import User
from seajourney.models.subscription_plan_change import SubscriptionPlanChange
from seajourney.services.plan_change_service import select_plan_item
from seajourney.services.stripe_service import object_id
from seajourney.services.tiers import FREE_TIER, normalize_tier, resolve_tier

logger = get_logger(__name__)


def clear_pending_change(user: User):
    """ダウングレード予約の射影をまとめてクリア (片方だけ残さない)"""
    user.pending_subscription_tier = None
    user.pending_change_effective_at = None


def map_stripe_status(stripe_status: Optional[str]) -> str:
    """Stripeの購読ステータス → active / inactive"""
    if stripe_status in ("active", "trialing", "past_due", "unpaid"):
        return "active"
    return "inactive"


# =========================================================
# ユーザー解決
# =========================================================

def resolve_user_for_subscription(db: Session, gateway, subscription: dict) -> Optional[User]:
    """metadata.user_id → Customer ID → Customer のメールアドレス の順でユーザーを特定"""
    user_id = (subscription.get("metadata") or {}).get("user_id")
    if user_id:
        user = db.query(User).filter(User.id == user_id).first()
        if user:
            return user

    customer_id = object_id(subscription.get("customer"))
    if customer_id:
        user = db.query(User).filter(User.stripe_customer_id == customer_id).first()
        if user:
            return user
        try:
            customer = gateway.retrieve_customer(customer_id)
        except Exception as e:
            logger.error(f"Stripe Customer取得失敗: customer={customer_id} - {e}")
            return None
        email = (customer or {}).get("email")
        if email:
            return db.query(User).filter(User.email == email).first()
    return None


# =========================================================
# Webhook: customer.subscription.*
# =========================================================

def sync_subscription(db: Session, gateway, subscription: dict, deleted: bool = False):
    """購読イベントからユーザーのティア・ステータス射影を更新"""
    user = resolve_user_for_subscription(db, gateway, subscription)
    if not user:
        logger.warning(
            f"購読イベント: ユーザー不明 subscription={subscription.get('id')}, "
            f"customer={object_id(subscription.get('customer'))}"
        )
        return None

    stripe_status = subscription.get("status")
    customer_id = object_id(subscription.get("customer"))
    if customer_id and not user.stripe_customer_id:
        user.stripe_customer_id = customer_id

    if deleted or stripe_status in ("canceled", "incomplete_expired"):
        user.subscription_tier = FREE_TIER
        user.subscription_status = "inactive"
        user.stripe_subscription_id = None
        clear_pending_change(user)
        db.commit()
        logger.info(f"購読終了: user_id={user.id}, subscription={subscription.get('id')}")
        return user

    items = (subscription.get("items") or {}).get("data") or []
    plan_item = select_plan_item(items, (settings.STRIPE_CREW_PRODUCT_ID, settings.STRIPE_VESSEL_PRODUCT_ID))
    tier = resolve_tier(plan_item.get("price")) if plan_item else FREE_TIER
    status = map_stripe_status(stripe_status)

    user.stripe_subscription_id = subscription.get("id")
    user.subscription_status = status
    user.subscription_tier = tier if status == "active" else FREE_TIER

    # 予約していたダウングレードが適用された (ティア名は同じこともあるので価格IDで判定)
    current_price_id = object_id((plan_item or {}).get("price"))
    pending_change = _pending_downgrade(db, subscription.get("id"))
    if user.pending_subscription_tier and pending_change and pending_change.new_price_id == current_price_id:
        logger.info(f"ダウングレード適用検知: user_id={user.id}, price={current_price_id}")
        clear_pending_change(user)
        _mark_downgrade_applied(db, subscription.get("id"))
    # スケジュールが外された (ポータル等で取消) のに予約だけ残っている
    elif user.pending_subscription_tier and not subscription.get("schedule"):
        logger.info(f"ダウングレード予約消失: user_id={user.id}")
        clear_pending_change(user)

    db.commit()
    logger.info(
        f"購読同期: user_id={user.id}, status={stripe_status}→{status}, tier={user.subscription_tier}"
    )
    return user


def _pending_downgrade(db: Session, stripe_subscription_id: Optional[str]) -> Optional[SubscriptionPlanChange]:
    """未適用のダウングレード履歴 (最新の1件)"""
    if not stripe_subscription_id:
        return None
    return db.query(SubscriptionPlanChange).filter(
        SubscriptionPlanChange.stripe_subscription_id == stripe_subscription_id,
        SubscriptionPlanChange.change_type == "downgrade",
        SubscriptionPlanChange.applied == False,  # noqa: E712
    ).order_by(SubscriptionPlanChange.id.desc()).first()


def _mark_downgrade_applied(db: Session, stripe_subscription_id: Optional[str]):
    if not stripe_subscription_id:
        return
    db.query(SubscriptionPlanChange).filter(
        SubscriptionPlanChange.stripe_subscription_id == stripe_subscription_id,
        SubscriptionPlanChange.change_type == "downgrade",
        SubscriptionPlanChange.applied == False,  # noqa: E712
    ).update({"applied": True}, synchronize_session=False)


def handle_checkout_completed(db: Session, gateway, session: dict):
    """checkout.session.completed: client_reference_id を購読の metadata.user_id に記録"""
    user_id = session.get("client_reference_id")
    subscription_id = object_id(session.get("subscription"))
    if not user_id or not subscription_id:
        logger.info(f"Checkout完了: 紐付け情報なし session={session.get('id')}")
        return

    try:
        subscription = gateway.retrieve_subscription(subscription_id)
        metadata = dict(subscription.get("metadata") or {})
        if not metadata.get("user_id"):
            metadata["user_id"] = user_id
            gateway.set_subscription_metadata(subscription_id, metadata)
            logger.info(f"購読metadataにuser_id設定: subscription={subscription_id}")
    except Exception as e:
        logger.error(f"購読metadata更新失敗: subscription={subscription_id} - {e}")

    user = db.query(User).filter(User.id == user_id).first()
    if user:
        customer_id = object_id(session.get("customer"))
        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
        user.stripe_subscription_id = subscription_id
        db.commit()


# =========================================================
# 解約・再開
# =========================================================

def cancel_subscription(db: Session, gateway, subscription_id: Optional[str], at_period_end: bool = False) -> dict:
    """購読解約。スケジュール管理下の購読は直接解約できないため先に解除する"""
    if not subscription_id:
        raise BadRequestError("Missing subscriptionId")

    try:
        subscription = gateway.retrieve_subscription(subscription_id)
        schedule_id = object_id(subscription.get("schedule"))
        if schedule_id:
            gateway.release_schedule(schedule_id)
        updated = gateway.cancel_subscription(subscription_id, at_period_end=at_period_end)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Stripe購読解約失敗: subscription={subscription_id} - {e}")
        raise PaymentProviderError(str(e) or "Failed to cancel subscription")

    user = db.query(User).filter(User.stripe_subscription_id == subscription_id).first()
    if user:
        clear_pending_change(user)
        db.commit()

    logger.info(f"購読解約: subscription={subscription_id}, at_period_end={at_period_end}")
    return {"success": True, "status": updated.get("status"), "cancelAtPeriodEnd": at_period_end}


def resume_subscription(gateway, subscription_id: Optional[str]) -> dict:
    """期間終了時キャンセルを取り消して継続"""
    if not subscription_id:
        raise BadRequestError("Missing subscriptionId")
    try:
        updated = gateway.resume_subscription(subscription_id)
    except Exception as e:
        logger.error(f"Stripe購読再開失敗: subscription={subscription_id} - {e}")
        raise PaymentProviderError(str(e) or "Failed to resume subscription")
    logger.info(f"購読再開: subscription={subscription_id}")
    return {"success": True, "subscriptionId": updated.get("id", subscription_id)}


# =========================================================
# スケジューラ: 期限到来した予約の射影を反映
# =========================================================

def apply_elapsed_pending_changes(db: Session, now: datetime) -> int:
    """適用日を過ぎたダウングレード予約をユーザーのティアに反映 (Webhook取りこぼし対策)"""
    users = db.query(User).filter(
        User.pending_subscription_tier != None,  # noqa: E711
        User.pending_change_effective_at <= now,
    ).all()

    for user in users:
        old_tier = user.subscription_tier
        user.subscription_tier = normalize_tier(user.pending_subscription_tier)
        clear_pending_change(user)
        _mark_downgrade_applied(db, user.stripe_subscription_id)
        logger.info(f"ダウングレード反映: user_id={user.id}, {old_tier} → {user.subscription_tier}")

    if users:
        db.commit()
    return len(users)
