from sqlalchemy import Column, String, Text, DateTime, Enum as SAEnum, ForeignKey, func
from seajourney.core.database import Base
from seajourney.models._ids import new_uuid


class VesselClaimRequest(Base):
    __tablename__ = "vessel_claim_requests"

    id = Column(String(36), primary_key=True, default=new_uuid)
    vessel_id = Column(String(36), ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_role = Column(String(50), nullable=False, default="captain")
    status = Column(
        SAEnum("pending", "vessel_approved", "admin_approved", "approved", "rejected",
               name="vessel_claim_status"),
        nullable=False,
        default="pending",
        index=True,
    )
    # 承認スロット (それぞれ1度だけ埋められる)
    vessel_approved_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    vessel_approved_at = Column(DateTime, nullable=True)
    admin_approved_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    admin_approved_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
