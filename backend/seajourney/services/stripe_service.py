"""Stripe API操作サービス

プラン変更エンジンが使う Stripe 操作をこのゲートウェイに集約する。
ルーターは get_stripe_gateway() 経由で受け取るため、テストでは同じメソッドを持つ
フェイクに差し替えられる。
"""
import stripe
from seajourney.core.config import settings
from seajourney.core.logging import get_logger

logger = get_logger(__name__)


def _init_stripe():
    stripe.api_key = settings.STRIPE_SECRET_KEY


def as_dict(obj):
    """StripeObject をプレーンな dict に変換 (SDKのバージョン差を吸収)"""
    if obj is None:
        return None
    to_dict = getattr(obj, "to_dict_recursive", None) or getattr(obj, "to_dict", None)
    return to_dict() if to_dict else obj


def object_id(value) -> str | None:
    """展開済みオブジェクト / ID文字列 のどちらからでもIDを取り出す"""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


class StripeGateway:
    """Stripe の Subscription / Schedule / Price 操作"""

    def __init__(self):
        _init_stripe()

    # --- 参照系 ---

    def retrieve_subscription(self, subscription_id: str):
        """購読を取得 (明細の price / product を展開)"""
        return as_dict(stripe.Subscription.retrieve(
            subscription_id,
            expand=["items.data.price.product"],
        ))

    def retrieve_price(self, price_id: str):
        """Price を取得 (product を展開)"""
        return as_dict(stripe.Price.retrieve(price_id, expand=["product"]))

    def retrieve_customer(self, customer_id: str):
        return as_dict(stripe.Customer.retrieve(customer_id))

    def retrieve_schedule(self, schedule_id: str):
        return as_dict(stripe.SubscriptionSchedule.retrieve(schedule_id))

    # --- 更新系 ---

    def create_schedule_from_subscription(self, subscription_id: str):
        """既存購読からスケジュールを作成 (現在の明細でフェーズ1つが作られる)"""
        schedule = stripe.SubscriptionSchedule.create(from_subscription=subscription_id)
        logger.info(f"Stripe Schedule作成: subscription={subscription_id}, schedule={schedule.id}")
        return as_dict(schedule)

    def update_schedule(self, schedule_id: str, phases: list[dict], end_behavior: str = "release"):
        """スケジュールのフェーズを書き換え"""
        schedule = stripe.SubscriptionSchedule.modify(
            schedule_id,
            phases=phases,
            end_behavior=end_behavior,
            proration_behavior="none",
        )
        logger.info(f"Stripe Schedule更新: schedule={schedule_id}, phases={len(phases)}")
        return as_dict(schedule)

    def release_schedule(self, schedule_id: str):
        """スケジュールを解除 (購読自体は維持される)"""
        schedule = stripe.SubscriptionSchedule.release(schedule_id)
        logger.info(f"Stripe Schedule解除: schedule={schedule_id}")
        return as_dict(schedule)

    def update_subscription_item(self, subscription_id: str, item_id: str, price_id: str):
        """プラン明細のPriceを即時変更 (日割り請求、支払い未完了なら保留)"""
        return as_dict(stripe.Subscription.modify(
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="create_prorations",
            payment_behavior="pending_if_incomplete",
            expand=["latest_invoice.payment_intent"],
        ))

    def cancel_subscription(self, subscription_id: str, at_period_end: bool = False):
        """購読をキャンセル"""
        if at_period_end:
            return as_dict(stripe.Subscription.modify(subscription_id, cancel_at_period_end=True))
        return as_dict(stripe.Subscription.cancel(subscription_id))

    def resume_subscription(self, subscription_id: str):
        """期間終了時キャンセルの取り消し"""
        return as_dict(stripe.Subscription.modify(subscription_id, cancel_at_period_end=False))

    def set_subscription_metadata(self, subscription_id: str, metadata: dict):
        return as_dict(stripe.Subscription.modify(subscription_id, metadata=metadata))


def construct_webhook_event(payload: bytes, sig_header: str, secret: str):
    """Webhook イベントを構築・検証"""
    return stripe.Webhook.construct_event(payload, sig_header, secret)
