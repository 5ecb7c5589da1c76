from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, func
from seajourney.core.database import Base


class SubscriptionPlanChange(Base):
    __tablename__ = "subscription_plan_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=False, index=True)
    old_price_id = Column(String(255), nullable=True)
    new_price_id = Column(String(255), nullable=False)
    old_tier = Column(String(50), nullable=True)
    new_tier = Column(String(50), nullable=True)
    change_type = Column(String(20), nullable=False, comment="upgrade / downgrade")
    effective_at = Column(DateTime, nullable=True, comment="変更適用予定日時 (NULLなら即時適用済み)")
    applied = Column(Boolean, nullable=False, default=False, comment="適用済み (取消含む)")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
