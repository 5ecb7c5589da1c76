from sqlalchemy import Column, String, Boolean, Date, DateTime, ForeignKey, func
from seajourney.core.database import Base
from seajourney.models._ids import new_uuid


class VesselSigningAuthority(Base):
    __tablename__ = "vessel_signing_authorities"

    id = Column(String(36), primary_key=True, default=new_uuid)
    vessel_id = Column(String(36), ForeignKey("vessels.id", ondelete="CASCADE"), nullable=False, index=True)
    captain_user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True, comment="NULLなら現在有効")
    is_primary = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
