from sqlalchemy import Column, String, Date, DateTime, ForeignKey, func
from seajourney.core.database import Base
from seajourney.models._ids import new_uuid


class VesselAssignment(Base):
    __tablename__ = "vessel_assignments"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    vessel_id = Column(String(36), ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True, comment="NULLなら現在乗船中")
    position = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
