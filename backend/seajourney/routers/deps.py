"""共通依存関数"""
from seajourney.services.stripe_service import StripeGateway


def get_stripe_gateway() -> StripeGateway:
    """Stripe ゲートウェイ (テストでは dependency_overrides でフェイクに差し替え)"""
    return StripeGateway()
