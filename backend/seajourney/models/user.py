from sqlalchemy import Column, String, DateTime, Enum as SAEnum, ForeignKey, func
from seajourney.core.database import Base
from seajourney.models._ids import new_uuid


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    position = Column(String(100), nullable=True, comment="役職 (Master, Chief Officer 等)")
    role = Column(SAEnum("crew", "vessel", "admin", name="user_role"), nullable=False, default="crew")
    active_vessel_id = Column(String(36), ForeignKey("vessels.id", ondelete="SET NULL"), nullable=True, index=True)

    # 課金 (Stripeが正。以下は表示用の射影)
    stripe_customer_id = Column(String(255), nullable=True, unique=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    subscription_tier = Column(String(50), nullable=False, default="free")
    subscription_status = Column(SAEnum("active", "inactive", name="subscription_status"), nullable=False, default="inactive")
    pending_subscription_tier = Column(String(50), nullable=True, comment="ダウングレード予定ティア")
    pending_change_effective_at = Column(DateTime, nullable=True, comment="ダウングレード適用予定日時")

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
