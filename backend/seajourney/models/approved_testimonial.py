from sqlalchemy import Column, String, Integer, Date, DateTime, ForeignKey, func
from seajourney.core.database import Base
from seajourney.models._ids import new_uuid


class ApprovedTestimonial(Base):
    """承認済みテスティモニアルの不変スナップショット (第三者検証用)"""
    __tablename__ = "approved_testimonials"

    id = Column(String(36), primary_key=True, default=new_uuid)
    # 1テスティモニアルにつき1件 (UNIQUE制約で冪等性を担保)
    testimonial_id = Column(String(36), ForeignKey("testimonials.id"), nullable=False, unique=True, index=True)
    crew_name = Column(String(255), nullable=False)
    rank = Column(String(100), nullable=False)
    vessel_name = Column(String(255), nullable=False)
    imo = Column(String(20), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_days = Column(Integer, nullable=False)
    sea_days = Column(Integer, nullable=False)
    standby_days = Column(Integer, nullable=False)
    captain_name = Column(String(255), nullable=False)
    captain_license = Column(String(100), nullable=True)
    document_id = Column(String(36), nullable=False)
    testimonial_code = Column(String(20), nullable=True, index=True)
    approved_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "testimonial_id": self.testimonial_id,
            "crew_name": self.crew_name,
            "rank": self.rank,
            "vessel_name": self.vessel_name,
            "imo": self.imo,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "total_days": self.total_days,
            "sea_days": self.sea_days,
            "standby_days": self.standby_days,
            "captain_name": self.captain_name,
            "captain_license": self.captain_license,
            "document_id": self.document_id,
            "testimonial_code": self.testimonial_code,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
        }
