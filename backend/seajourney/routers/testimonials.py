from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from seajourney.core.database import get_db
from seajourney.schemas.testimonial import CreateSnapshotRequest
from seajourney.services import testimonial_service

router = APIRouter(prefix="/api/testimonials", tags=["testimonials"])


@router.post("/create-snapshot")
def create_snapshot(req: CreateSnapshotRequest, db: Session = Depends(get_db)):
    """承認済みテスティモニアルのスナップショット作成 (既存ならそのまま返す)"""
    snapshot, created = testimonial_service.create_snapshot(db, req.testimonial_id)
    return {"success": True, "created": created, "snapshot": snapshot.to_dict()}
