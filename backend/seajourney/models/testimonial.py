from sqlalchemy import Column, String, Integer, Text, Date, DateTime, Enum as SAEnum, ForeignKey, func
from seajourney.core.database import Base
from seajourney.models._ids import new_uuid


class Testimonial(Base):
    __tablename__ = "testimonials"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    vessel_id = Column(String(36), ForeignKey("vessels.id", ondelete="SET NULL"), nullable=True, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_days = Column(Integer, nullable=False, default=0)
    at_sea_days = Column(Integer, nullable=False, default=0)
    standby_days = Column(Integer, nullable=False, default=0)
    yard_days = Column(Integer, nullable=False, default=0)
    leave_days = Column(Integer, nullable=False, default=0)
    status = Column(
        SAEnum("draft", "pending_captain", "approved", "rejected", name="testimonial_status"),
        nullable=False,
        default="draft",
    )

    # 署名リンク (1回限り)
    signoff_token = Column(String(128), nullable=True, unique=True)
    signoff_target_email = Column(String(255), nullable=True)
    signoff_token_expires_at = Column(DateTime, nullable=True)
    signoff_used_at = Column(DateTime, nullable=True, comment="最初の確定判断時に1度だけ設定")

    captain_name = Column(String(255), nullable=True)
    captain_email = Column(String(255), nullable=True)
    captain_position = Column(String(100), nullable=True)
    captain_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # 承認後に別プロセスで採番 (承認直後は未設定の場合あり)
    testimonial_code = Column(String(20), nullable=True, unique=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
