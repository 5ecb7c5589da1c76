"""キャプテン署名ルーター (公開エンドポイント。token + email で認可)"""
from typing import Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from seajourney.core.database import get_db
from seajourney.core.rate_limit import limiter, SIGNOFF_RATE_LIMIT
from seajourney.schemas.testimonial import SignoffDecisionRequest
from seajourney.services import testimonial_service

router = APIRouter(prefix="/api/captain", tags=["captain-signoff"])


@router.get("/signoff")
@limiter.limit(SIGNOFF_RATE_LIMIT)
def get_signoff(
    request: Request,
    token: Optional[str] = None,
    email: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """署名画面用のテスティモニアル情報"""
    return {"success": True, "testimonial": testimonial_service.get_signoff(db, token, email)}


@router.post("/signoff")
@limiter.limit(SIGNOFF_RATE_LIMIT)
def post_signoff(
    request: Request,
    req: SignoffDecisionRequest,
    db: Session = Depends(get_db),
):
    """承認 / 却下"""
    return testimonial_service.decide_signoff(
        db,
        token=req.token,
        email=req.email,
        decision=req.decision,
        rejection_reason=req.rejection_reason,
    )
