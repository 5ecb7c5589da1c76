from sqlalchemy import Column, String, DateTime, func
from seajourney.core.database import Base
from seajourney.models._ids import new_uuid


class Vessel(Base):
    __tablename__ = "vessels"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(255), nullable=False)
    imo = Column(String(20), nullable=True, index=True)
    # 循環参照になるため FK は張らない (users.active_vessel_id → vessels)
    vessel_manager_id = Column(String(36), nullable=True, comment="船舶管理アカウント (role=vessel)")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
