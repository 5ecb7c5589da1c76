"""プラン変更エンジン: アップグレードは即時 (日割り)、ダウングレードは次回更新日に予約

Stripe が課金の正。users テーブルの pending_* は画面表示用の射影でしかなく、
課金判断には使わない。
"""
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from seajourney.core.config import settings
from seajourney.core.errors import AppError, BadRequestError, ConfigurationError, PaymentProviderError
from seajourney.core.logging import get_logger
from seajourney.models.user import User
from seajourney.models.subscription_plan_change import SubscriptionPlanChange
from seajourney.services.stripe_service import object_id
from seajourney.services.tiers import resolve_tier
from seajourney.services import mail_service

logger = get_logger(__name__)

MODE_NO_CHANGE = "no_change"
MODE_DOWNGRADE_SCHEDULED = "downgrade_scheduled"
MODE_UPGRADE_APPLIED = "upgrade_applied"


def ts_to_datetime(ts: Optional[int]) -> Optional[datetime]:
    """Unixタイムスタンプ → naive UTC datetime (DB保存形式)"""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


# =========================================================
# プラン明細の選択
# =========================================================
# 過去データはメタデータが揃っていないため、緩い順に判定する互換措置。
# 厳格化 (tierメタデータ必須など) は既存購読を壊さないか確認してから。

def _item_price(item: dict) -> dict:
    return item.get("price") or {}


def _item_product_id(item: dict) -> Optional[str]:
    return object_id(_item_price(item).get("product"))


def _matches_known_product(item: dict, product_ids: tuple[str, ...]) -> bool:
    return _item_product_id(item) in product_ids


def _has_tier_metadata(item: dict, product_ids: tuple[str, ...]) -> bool:
    return bool((_item_price(item).get("metadata") or {}).get("tier"))


def _any_item(item: dict, product_ids: tuple[str, ...]) -> bool:
    return True


PLAN_ITEM_MATCHERS: list[Callable[[dict, tuple[str, ...]], bool]] = [
    _matches_known_product,
    _has_tier_metadata,
    _any_item,
]


def select_plan_item(items: list[dict], product_ids: tuple[str, ...]) -> Optional[dict]:
    """購読明細から「プラン」に当たる明細を選ぶ (アドオンを除外)"""
    for matcher in PLAN_ITEM_MATCHERS:
        for item in items:
            if matcher(item, product_ids):
                return item
    return None


def product_family(product_id: Optional[str]) -> Optional[str]:
    if product_id and product_id == settings.STRIPE_CREW_PRODUCT_ID:
        return "crew"
    if product_id and product_id == settings.STRIPE_VESSEL_PRODUCT_ID:
        return "vessel"
    return None


# =========================================================
# スケジュールのフェーズ操作
# =========================================================

def select_current_phase(phases: list[dict], now_ts: int) -> Optional[dict]:
    """now を [start_date, end_date) に含むフェーズ。無ければ最後のフェーズ"""
    if not phases:
        return None
    for phase in phases:
        start = phase.get("start_date")
        end = phase.get("end_date")
        if start is not None and start <= now_ts and (end is None or now_ts < end):
            return phase
    return phases[-1]


def _phase_items(phase: dict) -> list[dict]:
    return [
        {"price": object_id(item.get("price")), "quantity": item.get("quantity") or 1}
        for item in phase.get("items") or []
    ]


def build_downgrade_phases(current_phase: dict, period_end: int, new_price_id: str, quantity: int = 1) -> list[dict]:
    """
    ダウングレード用の2フェーズを組み立てる。

    A: 現フェーズの明細を [元の開始日, 期間終了) で維持
    B: 期間終了から新Price 1明細 (終了日なし)
    何度予約し直しても常に2フェーズに書き換える。
    """
    return [
        {
            "items": _phase_items(current_phase),
            "start_date": current_phase.get("start_date"),
            "end_date": period_end,
        },
        {
            "items": [{"price": new_price_id, "quantity": quantity}],
            "start_date": period_end,
        },
    ]


def _current_period_end(subscription: dict, plan_item: dict) -> Optional[int]:
    # API バージョンにより期間情報は購読本体 or 明細側にある
    return subscription.get("current_period_end") or plan_item.get("current_period_end")


# =========================================================
# 表示用射影 (users.pending_*)
# =========================================================

def _find_user(db: Session, user_id: Optional[str], customer_id: Optional[str]) -> Optional[User]:
    if user_id:
        return db.query(User).filter(User.id == user_id).first()
    if customer_id:
        return db.query(User).filter(User.stripe_customer_id == customer_id).first()
    return None


def _supersede_pending_changes(db: Session, stripe_subscription_id: str):
    """未適用のプラン変更履歴を取消扱いにする"""
    pending = db.query(SubscriptionPlanChange).filter(
        SubscriptionPlanChange.stripe_subscription_id == stripe_subscription_id,
        SubscriptionPlanChange.applied == False,  # noqa: E712
    ).all()
    for p in pending:
        p.applied = True
    if pending:
        db.flush()


def _record_change(
    db: Session,
    user: Optional[User],
    subscription_id: str,
    old_price: dict,
    new_price: dict,
    change_type: str,
    effective_at: Optional[datetime],
):
    _supersede_pending_changes(db, subscription_id)
    db.add(SubscriptionPlanChange(
        user_id=user.id if user else None,
        stripe_subscription_id=subscription_id,
        old_price_id=old_price.get("id"),
        new_price_id=new_price.get("id"),
        old_tier=resolve_tier(old_price),
        new_tier=resolve_tier(new_price),
        change_type=change_type,
        effective_at=effective_at,
        applied=change_type == "upgrade",
    ))


# =========================================================
# エントリポイント
# =========================================================

def change_plan(
    db: Session,
    gateway,
    subscription_id: Optional[str],
    price_id: Optional[str],
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    プラン変更。金額 (unit_amount) のみで方向を判定する。

    Returns:
        {"success": True, "mode": "no_change" | "downgrade_scheduled" | "upgrade_applied", ...}
    """
    if not subscription_id or not price_id:
        raise BadRequestError("Missing subscriptionId or priceId")

    crew_product_id = settings.STRIPE_CREW_PRODUCT_ID
    vessel_product_id = settings.STRIPE_VESSEL_PRODUCT_ID
    if not crew_product_id or not vessel_product_id:
        logger.error("プラン変更: STRIPE_CREW_PRODUCT_ID / STRIPE_VESSEL_PRODUCT_ID が未設定")
        raise ConfigurationError("Billing products are not configured on the server")

    now_ts = int(now.replace(tzinfo=timezone.utc).timestamp()) if now else int(time.time())

    try:
        subscription = gateway.retrieve_subscription(subscription_id)
        items = (subscription.get("items") or {}).get("data") or []
        plan_item = select_plan_item(items, (crew_product_id, vessel_product_id))
        if not plan_item:
            raise BadRequestError("Subscription has no plan item")

        current_price = _item_price(plan_item)
        new_price = gateway.retrieve_price(price_id)

        current_product_id = _item_product_id(plan_item)
        new_product_id = object_id(new_price.get("product"))
        if product_family(current_product_id) != product_family(new_product_id):
            logger.warning(
                f"プラン変更拒否 (crew/vessel 跨ぎ): subscription={subscription_id}, "
                f"{current_product_id} → {new_product_id}"
            )
            raise BadRequestError(
                "Cannot switch between crew and vessel plans",
                extra={"debug": {"currentProductId": current_product_id, "newProductId": new_product_id}},
            )

        if current_price.get("id") == new_price.get("id"):
            logger.info(f"プラン変更なし: subscription={subscription_id}, price={price_id}")
            return {"success": True, "mode": MODE_NO_CHANGE}

        current_amount = current_price.get("unit_amount") or 0
        new_amount = new_price.get("unit_amount") or 0

        if new_amount < current_amount:
            return _schedule_downgrade(
                db, gateway, subscription, plan_item, current_price, new_price, user_id, now_ts,
            )
        return _apply_upgrade(db, gateway, subscription, plan_item, current_price, new_price, user_id)
    except AppError:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"プラン変更失敗: subscription={subscription_id}, price={price_id} - {e}")
        raise PaymentProviderError(str(e) or "Failed to change subscription plan")


def _schedule_downgrade(
    db: Session,
    gateway,
    subscription: dict,
    plan_item: dict,
    current_price: dict,
    new_price: dict,
    user_id: Optional[str],
    now_ts: int,
) -> dict:
    """ダウングレード: 現期間終了時に切り替わるスケジュールを設定"""
    subscription_id = subscription["id"]
    period_end = _current_period_end(subscription, plan_item)
    if not period_end:
        raise BadRequestError("Subscription has no current billing period")

    schedule_id = object_id(subscription.get("schedule"))
    if schedule_id:
        schedule = gateway.retrieve_schedule(schedule_id)
    else:
        schedule = gateway.create_schedule_from_subscription(subscription_id)
        schedule_id = schedule["id"]

    current_phase = select_current_phase(schedule.get("phases") or [], now_ts)
    if current_phase is None:
        # from_subscription 直後はフェーズが返らないことがあるため購読から組み立てる
        current_phase = {
            "start_date": subscription.get("current_period_start") or plan_item.get("current_period_start"),
            "items": [{"price": current_price.get("id"), "quantity": plan_item.get("quantity") or 1}],
        }

    phases = build_downgrade_phases(current_phase, period_end, new_price["id"], plan_item.get("quantity") or 1)
    gateway.update_schedule(schedule_id, phases=phases, end_behavior="release")

    pending_tier = resolve_tier(new_price)
    effective_at = ts_to_datetime(period_end)

    user = _find_user(db, user_id, object_id(subscription.get("customer")))
    if user:
        user.pending_subscription_tier = pending_tier
        user.pending_change_effective_at = effective_at
    else:
        logger.warning(f"ダウングレード予約: ユーザー不明 subscription={subscription_id}, user_id={user_id}")
    _record_change(db, user, subscription_id, current_price, new_price, "downgrade", effective_at)
    db.commit()

    logger.info(
        f"ダウングレード予約: subscription={subscription_id}, schedule={schedule_id}, "
        f"{current_price.get('id')} → {new_price['id']}, 適用予定={effective_at}"
    )

    if user:
        mail_service.send_plan_change_email(
            user.email,
            tier=pending_tier,
            previous_tier=resolve_tier(current_price),
            event_type="downgraded",
            effective_date=effective_at,
        )

    return {
        "success": True,
        "mode": MODE_DOWNGRADE_SCHEDULED,
        "effectiveAt": effective_at.isoformat(),
        "pendingTier": pending_tier,
        "scheduleId": schedule_id,
    }


def _apply_upgrade(
    db: Session,
    gateway,
    subscription: dict,
    plan_item: dict,
    current_price: dict,
    new_price: dict,
    user_id: Optional[str],
) -> dict:
    """アップグレード (または同額): 即時適用・日割り"""
    subscription_id = subscription["id"]

    # 予約中のダウングレードが即時アップグレードを上書きしないよう先に解除
    schedule = subscription.get("schedule")
    schedule_id = object_id(schedule)
    if schedule_id:
        schedule_status = schedule.get("status") if isinstance(schedule, dict) else None
        if schedule_status in (None, "active", "not_started"):
            gateway.release_schedule(schedule_id)

    updated = gateway.update_subscription_item(subscription_id, plan_item["id"], new_price["id"])

    user = _find_user(db, user_id, object_id(subscription.get("customer")))
    if user:
        user.pending_subscription_tier = None
        user.pending_change_effective_at = None
    _record_change(db, user, subscription_id, current_price, new_price, "upgrade", None)
    db.commit()

    logger.info(
        f"アップグレード適用: subscription={subscription_id}, "
        f"{current_price.get('id')} → {new_price['id']}, status={updated.get('status')}"
    )

    if user:
        mail_service.send_plan_change_email(
            user.email,
            tier=resolve_tier(new_price),
            previous_tier=resolve_tier(current_price),
            event_type="upgraded",
        )

    result = {
        "success": True,
        "mode": MODE_UPGRADE_APPLIED,
        "status": updated.get("status"),
    }
    invoice = updated.get("latest_invoice")
    if isinstance(invoice, dict):
        result["latestInvoice"] = {"id": invoice.get("id"), "status": invoice.get("status")}
        payment_intent = invoice.get("payment_intent")
        if isinstance(payment_intent, dict):
            result["paymentIntent"] = {
                "id": payment_intent.get("id"),
                "status": payment_intent.get("status"),
                "clientSecret": payment_intent.get("client_secret"),
            }
    return result
