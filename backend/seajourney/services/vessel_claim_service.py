"""船舶キャプテン申請の二者承認 (vessel側 + admin側)

両スロットが埋まった時点で approved とし、乗船割当・署名権限などを付与する。
付与処理は順序付きの冪等ステップとして1つずつコミットするため、途中で失敗しても
reprovision で未完了分だけ再実行できる。
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from seajourney.core.config import settings
from seajourney.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from seajourney.core.logging import get_logger
from seajourney.models.user import User
from seajourney.models.vessel import Vessel
from seajourney.models.vessel_assignment import VesselAssignment
from seajourney.models.vessel_claim_request import VesselClaimRequest
from seajourney.models.vessel_signing_authority import VesselSigningAuthority
from seajourney.services import mail_service

logger = get_logger(__name__)

PENDING = "pending"
VESSEL_APPROVED = "vessel_approved"
ADMIN_APPROVED = "admin_approved"
APPROVED = "approved"
REJECTED = "rejected"
TERMINAL_STATUSES = (APPROVED, REJECTED)
OPEN_STATUSES = (PENDING, VESSEL_APPROVED, ADMIN_APPROVED)

APPROVAL_TYPES = ("vessel", "admin")
DEFAULT_POSITION = "Captain"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _slot_columns(approval_type: str):
    if approval_type == "vessel":
        return VesselClaimRequest.vessel_approved_by, VesselClaimRequest.vessel_approved_at
    return VesselClaimRequest.admin_approved_by, VesselClaimRequest.admin_approved_at


# =========================================================
# 申請作成・却下
# =========================================================

def create_claim_request(
    db: Session,
    vessel_id: Optional[str],
    user_id: Optional[str],
    requested_role: Optional[str] = None,
) -> VesselClaimRequest:
    if not vessel_id:
        raise BadRequestError("Missing required field: vesselId")
    if not user_id:
        raise BadRequestError("Missing required field: userId")

    if not db.query(Vessel).filter(Vessel.id == vessel_id).first():
        raise NotFoundError("Vessel not found")
    if not db.query(User).filter(User.id == user_id).first():
        raise NotFoundError("User not found")

    open_request = db.query(VesselClaimRequest).filter(
        VesselClaimRequest.vessel_id == vessel_id,
        VesselClaimRequest.requested_by == user_id,
        VesselClaimRequest.status.in_(OPEN_STATUSES),
    ).first()
    if open_request:
        raise ConflictError(
            "You already have an open captaincy request for this vessel",
            extra={"requestId": open_request.id},
        )

    claim = VesselClaimRequest(
        vessel_id=vessel_id,
        requested_by=user_id,
        requested_role=requested_role or "captain",
        status=PENDING,
    )
    db.add(claim)
    db.commit()
    db.refresh(claim)
    logger.info(f"キャプテン申請作成: request_id={claim.id}, vessel_id={vessel_id}, user_id={user_id}")
    return claim


def reject_claim_request(
    db: Session,
    request_id: Optional[str],
    reviewed_by: Optional[str],
    review_notes: Optional[str] = None,
) -> VesselClaimRequest:
    if not request_id:
        raise BadRequestError("Missing required field: requestId")
    if not reviewed_by:
        raise BadRequestError("Missing required field: reviewedBy")

    claim = db.query(VesselClaimRequest).filter(VesselClaimRequest.id == request_id).first()
    if not claim:
        raise NotFoundError("Request not found")
    if claim.status in TERMINAL_STATUSES:
        raise BadRequestError(f"Request has already been {claim.status}", extra={"currentStatus": claim.status})

    reviewer = db.query(User).filter(User.id == reviewed_by).first()
    if not reviewer:
        raise NotFoundError("Reviewer not found")
    if not (_can_fill_slot(reviewer, "admin", claim.vessel_id) or _can_fill_slot(reviewer, "vessel", claim.vessel_id)):
        raise ForbiddenError("You are not allowed to review this request")

    updated = db.query(VesselClaimRequest).filter(
        VesselClaimRequest.id == claim.id,
        VesselClaimRequest.status.in_(OPEN_STATUSES),
    ).update({
        "status": REJECTED,
        "review_notes": review_notes,
        "updated_at": _utcnow(),
    }, synchronize_session=False)
    if not updated:
        db.rollback()
        raise BadRequestError("Request is no longer open")
    db.commit()
    db.refresh(claim)
    logger.info(f"キャプテン申請却下: request_id={claim.id}, reviewed_by={reviewed_by}")
    return claim


# =========================================================
# 承認
# =========================================================

def _can_fill_slot(reviewer: User, approval_type: str, vessel_id: str) -> bool:
    if reviewer.role == "admin":
        return True
    if approval_type == "vessel":
        return reviewer.role == "vessel" and reviewer.active_vessel_id == vessel_id
    return False


def approve_claim_request(
    db: Session,
    request_id: Optional[str],
    reviewed_by: Optional[str],
    approval_type: Optional[str],
    now: Optional[datetime] = None,
) -> dict:
    """
    指定スロットの承認を記録。両スロットが埋まったら approved にして権限を付与する。

    同じスロットへの再承認は冪等扱いせず 400 (付与処理を二重に走らせないため)。
    """
    if not request_id:
        raise BadRequestError("Missing required field: requestId")
    if not reviewed_by:
        raise BadRequestError("Missing required field: reviewedBy")
    if approval_type not in APPROVAL_TYPES:
        raise BadRequestError('approvalType must be either "vessel" or "admin"')

    now = now or _utcnow()

    claim = db.query(VesselClaimRequest).filter(VesselClaimRequest.id == request_id).first()
    if not claim:
        raise NotFoundError("Request not found")

    if claim.status in TERMINAL_STATUSES:
        raise BadRequestError(f"Request has already been {claim.status}", extra={"currentStatus": claim.status})

    slot_by, slot_at = _slot_columns(approval_type)
    other_by, _ = _slot_columns("admin" if approval_type == "vessel" else "vessel")
    if getattr(claim, slot_by.key):
        raise BadRequestError(f"{approval_type.capitalize()} approval has already been recorded")

    reviewer = db.query(User).filter(User.id == reviewed_by).first()
    if not reviewer:
        raise NotFoundError("Reviewer not found")
    if not _can_fill_slot(reviewer, approval_type, claim.vessel_id):
        raise ForbiddenError(f"You are not allowed to give {approval_type} approval for this vessel")

    completes = bool(getattr(claim, other_by.key))
    if completes:
        # 同一船舶の承認を直列化してから上限を数える (FOR UPDATE 非対応DBでは素通り)
        # ロック取得後に読み取りビューが作られるよう新しいトランザクションで開始
        db.commit()
        db.query(Vessel).filter(Vessel.id == claim.vessel_id).with_for_update().first()
        approved_count = db.query(VesselClaimRequest).filter(
            VesselClaimRequest.vessel_id == claim.vessel_id,
            VesselClaimRequest.status == APPROVED,
            VesselClaimRequest.id != claim.id,
        ).count()
        if approved_count >= settings.MAX_CAPTAINS_PER_VESSEL:
            db.rollback()
            logger.warning(
                f"キャプテン上限到達: vessel_id={claim.vessel_id}, approved={approved_count}, request_id={claim.id}"
            )
            raise BadRequestError(
                "Maximum captain limit reached",
                extra={"maxCaptains": settings.MAX_CAPTAINS_PER_VESSEL},
            )
        new_status = APPROVED
    else:
        new_status = VESSEL_APPROVED if approval_type == "vessel" else ADMIN_APPROVED

    # スロットが空の場合だけ更新 (同時承認で付与処理が二重に走らないように)
    updated = db.query(VesselClaimRequest).filter(
        VesselClaimRequest.id == claim.id,
        slot_by.is_(None),
        other_by.isnot(None) if completes else other_by.is_(None),
        VesselClaimRequest.status.in_(OPEN_STATUSES),
    ).update({
        slot_by: reviewed_by,
        slot_at: now,
        "status": new_status,
        "updated_at": now,
    }, synchronize_session=False)
    if not updated:
        db.rollback()
        db.refresh(claim)
        if getattr(claim, slot_by.key):
            raise BadRequestError(f"{approval_type.capitalize()} approval has already been recorded")
        raise ConflictError("Request was updated by another reviewer, please retry")
    db.commit()
    db.refresh(claim)

    logger.info(
        f"キャプテン申請承認: request_id={claim.id}, type={approval_type}, "
        f"reviewed_by={reviewed_by}, status={claim.status}"
    )

    result = {"success": True, "status": claim.status, "fullyApproved": claim.status == APPROVED}
    if claim.status == APPROVED:
        report = provision_captaincy(db, claim, today=now.date())
        result["provisioning"] = report.to_dict()
        _notify_captain(db, claim)
    return result


def reprovision_claim_request(db: Session, request_id: Optional[str]) -> dict:
    """承認済み申請の付与処理を再実行 (途中失敗からの復旧用)"""
    if not request_id:
        raise BadRequestError("Missing required field: requestId")
    claim = db.query(VesselClaimRequest).filter(VesselClaimRequest.id == request_id).first()
    if not claim:
        raise NotFoundError("Request not found")
    if claim.status != APPROVED:
        raise BadRequestError("Request is not approved", extra={"currentStatus": claim.status})
    report = provision_captaincy(db, claim)
    return {"success": True, "provisioning": report.to_dict()}


def _captain_recipient(db: Session, claim: VesselClaimRequest):
    captain = db.query(User).filter(User.id == claim.requested_by).first()
    vessel = db.query(Vessel).filter(Vessel.id == claim.vessel_id).first()
    return captain, vessel


def _notify_captain(db: Session, claim: VesselClaimRequest):
    # 承認は確定済み。通知の失敗でリクエストを失敗させない
    try:
        captain, vessel = _captain_recipient(db, claim)
    except Exception as e:
        db.rollback()
        logger.error(f"キャプテン承認通知の宛先取得失敗: request_id={claim.id} - {e}")
        return
    if captain and vessel:
        mail_service.send_captaincy_approved_email(
            captain.email,
            captain_name=captain.full_name or captain.email,
            vessel_name=vessel.name,
        )


# =========================================================
# 権限付与ステップ (順序付き・各ステップ冪等)
# =========================================================

@dataclass
class ProvisioningContext:
    captain_user_id: str
    vessel_id: str
    today: date
    position: str = DEFAULT_POSITION


@dataclass
class ProvisioningReport:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"completed": self.completed, "failed": self.failed}


def _resolve_position(db: Session, ctx: ProvisioningContext):
    captain = db.query(User).filter(User.id == ctx.captain_user_id).first()
    ctx.position = (captain.position if captain else None) or DEFAULT_POSITION


def _close_other_assignments(db: Session, ctx: ProvisioningContext):
    """キャプテンが乗船中の他船舶の割当を終了 (同時に乗船できるのは1隻)"""
    closed = db.query(VesselAssignment).filter(
        VesselAssignment.user_id == ctx.captain_user_id,
        VesselAssignment.vessel_id != ctx.vessel_id,
        VesselAssignment.end_date.is_(None),
    ).update({"end_date": ctx.today}, synchronize_session=False)
    if closed:
        logger.info(f"他船舶の割当終了: user_id={ctx.captain_user_id}, {closed}件")


def _ensure_assignment(db: Session, ctx: ProvisioningContext):
    assignment = db.query(VesselAssignment).filter(
        VesselAssignment.user_id == ctx.captain_user_id,
        VesselAssignment.vessel_id == ctx.vessel_id,
        VesselAssignment.end_date.is_(None),
    ).first()
    if assignment:
        assignment.position = ctx.position
        return
    db.add(VesselAssignment(
        user_id=ctx.captain_user_id,
        vessel_id=ctx.vessel_id,
        start_date=ctx.today,
        end_date=None,
        position=ctx.position,
    ))


def _backfill_vessel_manager(db: Session, ctx: ProvisioningContext):
    """船舶に管理アカウントの参照が無ければ role=vessel のアカウントから補完"""
    vessel = db.query(Vessel).filter(Vessel.id == ctx.vessel_id).first()
    if not vessel or vessel.vessel_manager_id:
        return
    manager = db.query(User).filter(
        User.role == "vessel",
        User.active_vessel_id == ctx.vessel_id,
    ).first()
    if manager:
        vessel.vessel_manager_id = manager.id
        logger.info(f"vessel_manager_id補完: vessel_id={ctx.vessel_id}, manager={manager.id}")


def _set_active_vessel(db: Session, ctx: ProvisioningContext):
    db.query(User).filter(User.id == ctx.captain_user_id).update(
        {"active_vessel_id": ctx.vessel_id}, synchronize_session=False
    )


def _replace_primary_signing_authority(db: Session, ctx: ProvisioningContext):
    """有効な主署名権限は1隻につき1件。既存を終了してから追加する"""
    active = db.query(VesselSigningAuthority).filter(
        VesselSigningAuthority.vessel_id == ctx.vessel_id,
        VesselSigningAuthority.is_primary == True,  # noqa: E712
        VesselSigningAuthority.end_date.is_(None),
    ).all()
    if any(a.captain_user_id == ctx.captain_user_id for a in active) and len(active) == 1:
        return
    for authority in active:
        authority.end_date = ctx.today
    db.flush()
    db.add(VesselSigningAuthority(
        vessel_id=ctx.vessel_id,
        captain_user_id=ctx.captain_user_id,
        start_date=ctx.today,
        end_date=None,
        is_primary=True,
    ))


PROVISIONING_STEPS: list[tuple[str, Callable[[Session, ProvisioningContext], None]]] = [
    ("resolve_position", _resolve_position),
    ("close_other_assignments", _close_other_assignments),
    ("ensure_assignment", _ensure_assignment),
    ("backfill_vessel_manager", _backfill_vessel_manager),
    ("set_active_vessel", _set_active_vessel),
    ("replace_primary_signing_authority", _replace_primary_signing_authority),
]


def provision_captaincy(db: Session, claim: VesselClaimRequest, today: Optional[date] = None) -> ProvisioningReport:
    """
    承認済み申請の付与処理。

    各ステップを個別にコミットし、失敗はログに残して次へ進む
    (承認自体は確定済みのため失敗させない)。
    """
    ctx = ProvisioningContext(
        captain_user_id=claim.requested_by,
        vessel_id=claim.vessel_id,
        today=today or _utcnow().date(),
    )
    report = ProvisioningReport()
    for name, step in PROVISIONING_STEPS:
        try:
            step(db, ctx)
            db.commit()
            report.completed.append(name)
            logger.info(f"付与ステップ完了: request_id={claim.id}, step={name}")
        except Exception as e:
            db.rollback()
            report.failed.append(name)
            logger.error(f"付与ステップ失敗: request_id={claim.id}, step={name} - {e}")
    return report
