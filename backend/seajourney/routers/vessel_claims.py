"""船舶キャプテン申請ルーター"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from seajourney.core.database import get_db
from seajourney.schemas.vessel_claim import (
    CreateClaimRequest, ApproveClaimRequest, RejectClaimRequest, ReprovisionClaimRequest,
)
from seajourney.services import vessel_claim_service

router = APIRouter(prefix="/api/vessel-claim-requests", tags=["vessel-claims"])


@router.post("/create")
def create_claim(req: CreateClaimRequest, db: Session = Depends(get_db)):
    claim = vessel_claim_service.create_claim_request(
        db, req.vessel_id, req.user_id, requested_role=req.requested_role
    )
    return {"success": True, "requestId": claim.id, "status": claim.status}


@router.post("/approve")
def approve_claim(req: ApproveClaimRequest, db: Session = Depends(get_db)):
    """vessel / admin いずれかのスロットを承認。両方揃うと approved"""
    return vessel_claim_service.approve_claim_request(
        db, req.request_id, req.reviewed_by, req.approval_type
    )


@router.post("/reject")
def reject_claim(req: RejectClaimRequest, db: Session = Depends(get_db)):
    claim = vessel_claim_service.reject_claim_request(
        db, req.request_id, req.reviewed_by, review_notes=req.review_notes
    )
    return {"success": True, "status": claim.status}


@router.post("/reprovision")
def reprovision_claim(req: ReprovisionClaimRequest, db: Session = Depends(get_db)):
    """承認済み申請の付与処理を再実行"""
    return vessel_claim_service.reprovision_claim_request(db, req.request_id)
