"""テスティモニアル署名フロー

クルーの乗船期間をキャプテンが署名リンク (token + email) で承認/却下し、
承認時に第三者検証用の不変スナップショットを作成する。
"""
import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from seajourney.core.config import settings
from seajourney.core.errors import BadRequestError, ConflictError, GoneError, NotFoundError
from seajourney.core.logging import get_logger
from seajourney.core.retry import NO_WAIT, RetryPolicy
from seajourney.models.approved_testimonial import ApprovedTestimonial
from seajourney.models.testimonial import Testimonial
from seajourney.models.user import User
from seajourney.models.vessel import Vessel
from seajourney.services import mail_service

logger = get_logger(__name__)

PENDING_CAPTAIN = "pending_captain"
APPROVED = "approved"
REJECTED = "rejected"
DECISIONS = {"approve": APPROVED, "reject": REJECTED}

UNKNOWN = "Unknown"
CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def default_snapshot_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.SNAPSHOT_MAX_ATTEMPTS,
        base_delay=settings.SNAPSHOT_BACKOFF_SECONDS,
    )


# =========================================================
# 署名リンク検証
# =========================================================

def _load_for_signoff(db: Session, token: Optional[str], email: Optional[str], now: datetime) -> Testimonial:
    """token + email で検索し、判定順に検証 (404 → 410 → 409 → 409)"""
    if not token or not email:
        raise BadRequestError("Invalid sign-off link.")

    testimonial = db.query(Testimonial).filter(
        Testimonial.signoff_token == token,
        Testimonial.signoff_target_email == email,
    ).first()
    if not testimonial:
        logger.warning(f"署名リンク不一致: token={token[:8]}...")
        raise NotFoundError("This sign-off link is invalid or has been revoked.")

    if testimonial.signoff_token_expires_at and testimonial.signoff_token_expires_at < now:
        raise GoneError("This sign-off link has expired.")

    if testimonial.signoff_used_at:
        raise ConflictError("This sign-off link has already been used.")

    if testimonial.status != PENDING_CAPTAIN:
        raise ConflictError("This testimonial is not awaiting captain sign-off.")

    return testimonial


def get_signoff(db: Session, token: Optional[str], email: Optional[str], now: Optional[datetime] = None) -> dict:
    """キャプテン向けの表示データ (内部IDや他ユーザーの情報は返さない)"""
    testimonial = _load_for_signoff(db, token, email, now or _utcnow())

    vessel = None
    if testimonial.vessel_id:
        v = db.query(Vessel).filter(Vessel.id == testimonial.vessel_id).first()
        if v:
            vessel = {"id": v.id, "name": v.name, "imo": v.imo}

    return {
        "id": testimonial.id,
        "vessel_id": testimonial.vessel_id,
        "start_date": testimonial.start_date.isoformat(),
        "end_date": testimonial.end_date.isoformat(),
        "total_days": testimonial.total_days,
        "at_sea_days": testimonial.at_sea_days,
        "standby_days": testimonial.standby_days,
        "yard_days": testimonial.yard_days,
        "leave_days": testimonial.leave_days,
        "captain_name": testimonial.captain_name,
        "captain_email": testimonial.captain_email,
        "vessel": vessel,
    }


# =========================================================
# 署名 (承認 / 却下)
# =========================================================

def _captain_backfill(db: Session, testimonial: Testimonial, email: str) -> dict:
    """署名者のアカウントがあれば、未入力のキャプテン項目だけ補完する"""
    captain = db.query(User).filter(func.lower(User.email) == email.lower()).first()
    if not captain:
        return {}

    values = {"captain_user_id": captain.id}
    if not testimonial.captain_name and captain.full_name:
        values["captain_name"] = captain.full_name
    if not testimonial.captain_email:
        values["captain_email"] = captain.email
    if not testimonial.captain_position and captain.position:
        values["captain_position"] = captain.position
    return values


def decide_signoff(
    db: Session,
    token: Optional[str],
    email: Optional[str],
    decision: Optional[str],
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """キャプテンの判断を記録。承認時はスナップショットも作成 (失敗しても判断は確定させる)"""
    if not token or not email or not decision:
        raise BadRequestError("Missing required fields")
    if decision not in DECISIONS:
        raise BadRequestError('Decision must be either "approve" or "reject"')

    now = now or _utcnow()
    testimonial = _load_for_signoff(db, token, email, now)
    new_status = DECISIONS[decision]

    values = {
        "status": new_status,
        "signoff_used_at": now,
        "updated_at": now,
    }
    if decision == "reject" and rejection_reason:
        values["notes"] = (
            f"{testimonial.notes}\n\nRejection reason: {rejection_reason}"
            if testimonial.notes
            else f"Rejection reason: {rejection_reason}"
        )
    if decision == "approve":
        values.update(_captain_backfill(db, testimonial, email))

    # 同一トークンの同時リクエスト対策: トークン一致かつ未使用の行だけを更新
    updated = db.query(Testimonial).filter(
        Testimonial.id == testimonial.id,
        Testimonial.signoff_token == token,
        Testimonial.signoff_used_at.is_(None),
    ).update(values, synchronize_session=False)
    if updated == 0:
        db.rollback()
        raise ConflictError("This sign-off link has already been used.")
    db.commit()
    db.refresh(testimonial)

    logger.info(f"署名記録: testimonial_id={testimonial.id}, status={new_status}")

    snapshot_created = False
    if new_status == APPROVED:
        try:
            _, snapshot_created = create_snapshot(db, testimonial.id, policy=NO_WAIT)
        except Exception as e:
            # 承認自体は確定済み。スナップショットは後から補完できる
            db.rollback()
            logger.error(f"スナップショット作成失敗 (承認は確定済み): testimonial_id={testimonial.id} - {e}")

    _notify_crew(db, testimonial, decision, rejection_reason)

    return {"success": True, "status": new_status, "snapshotCreated": snapshot_created}


def _notify_crew(db: Session, testimonial: Testimonial, decision: str, rejection_reason: Optional[str]):
    try:
        crew = db.query(User).filter(User.id == testimonial.user_id).first()
        vessel = db.query(Vessel).filter(Vessel.id == testimonial.vessel_id).first() if testimonial.vessel_id else None
    except Exception as e:
        logger.error(f"署名結果通知の宛先取得失敗: testimonial_id={testimonial.id} - {e}")
        return
    if not crew:
        return
    mail_service.send_testimonial_decision_email(
        crew.email,
        crew_name=crew.full_name or crew.email,
        vessel_name=vessel.name if vessel else "your vessel",
        decision=decision,
        rejection_reason=rejection_reason,
    )


# =========================================================
# スナップショット
# =========================================================

def _build_snapshot(db: Session, testimonial: Testimonial, code: Optional[str]) -> ApprovedTestimonial:
    crew = db.query(User).filter(User.id == testimonial.user_id).first()
    vessel = db.query(Vessel).filter(Vessel.id == testimonial.vessel_id).first() if testimonial.vessel_id else None

    return ApprovedTestimonial(
        testimonial_id=testimonial.id,
        crew_name=(crew.full_name if crew else "") or UNKNOWN,
        rank=(crew.position if crew else None) or UNKNOWN,
        vessel_name=(vessel.name if vessel else None) or UNKNOWN,
        imo=vessel.imo if vessel else None,
        start_date=testimonial.start_date,
        end_date=testimonial.end_date,
        total_days=testimonial.total_days,
        sea_days=testimonial.at_sea_days,
        standby_days=testimonial.standby_days,
        captain_name=testimonial.captain_name or UNKNOWN,
        captain_license=testimonial.captain_position or None,
        document_id=testimonial.id,
        testimonial_code=code,
        approved_at=testimonial.updated_at or _utcnow(),
    )


def _existing_snapshot(db: Session, testimonial_id: str) -> Optional[ApprovedTestimonial]:
    return db.query(ApprovedTestimonial).filter(
        ApprovedTestimonial.testimonial_id == testimonial_id
    ).first()


def create_snapshot(
    db: Session,
    testimonial_id: Optional[str],
    policy: Optional[RetryPolicy] = None,
) -> tuple[ApprovedTestimonial, bool]:
    """
    承認済みテスティモニアルのスナップショットを作成 (冪等)。

    testimonial_code は別プロセスで採番されるため、policy に従って
    (status, testimonial_code) を再読込しながら待つ。上限に達したら code は NULL のまま作成。

    Returns:
        (スナップショット, 新規作成したか)
    """
    if not testimonial_id:
        raise BadRequestError("Missing required field: testimonialId")

    testimonial = db.query(Testimonial).filter(Testimonial.id == testimonial_id).first()
    if not testimonial:
        raise NotFoundError("Testimonial not found")

    existing = _existing_snapshot(db, testimonial_id)
    if existing:
        logger.info(f"スナップショット既存: testimonial_id={testimonial_id}")
        return existing, False

    initial_status = testimonial.status
    policy = policy or default_snapshot_policy()

    def fetch():
        # 毎回新しいトランザクションで読む (他プロセスの採番を反映)
        db.commit()
        return db.query(Testimonial.status, Testimonial.testimonial_code).filter(
            Testimonial.id == testimonial_id
        ).first()

    row, attempts = policy.poll(fetch, lambda r: r is not None and r.status == APPROVED and bool(r.testimonial_code))
    final_status = row.status if row else None
    code = row.testimonial_code if row else None

    if final_status != APPROVED:
        logger.error(
            f"スナップショット作成不可 (未承認): testimonial_id={testimonial_id}, "
            f"status={initial_status}→{final_status}, attempts={attempts}"
        )
        raise BadRequestError(
            "Testimonial is not approved",
            extra={
                "testimonialId": testimonial_id,
                "initialStatus": initial_status,
                "finalStatus": final_status,
            },
        )
    if not code:
        logger.warning(f"testimonial_code未採番のままスナップショット作成: testimonial_id={testimonial_id}, attempts={attempts}")

    testimonial = db.query(Testimonial).filter(Testimonial.id == testimonial_id).first()
    snapshot = _build_snapshot(db, testimonial, code)
    db.add(snapshot)
    try:
        db.commit()
    except IntegrityError:
        # 同時作成に負けた場合は既存を成功扱いで返す
        db.rollback()
        existing = _existing_snapshot(db, testimonial_id)
        if existing:
            logger.info(f"スナップショット同時作成を検知、既存を返却: testimonial_id={testimonial_id}")
            return existing, False
        raise
    db.refresh(snapshot)

    logger.info(
        f"スナップショット作成: testimonial_id={testimonial_id}, code={code}, vessel={snapshot.vessel_name}"
    )
    return snapshot, True


# =========================================================
# 非同期処理 (スケジューラから呼ばれる)
# =========================================================

def generate_testimonial_code() -> str:
    """SJ-XXXX-XXXX 形式 (英大文字+数字)"""
    segment = lambda: "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))  # noqa: E731
    return f"SJ-{segment()}-{segment()}"


def assign_testimonial_codes(db: Session, limit: int = 100, max_collisions: int = 5) -> int:
    """承認済みで未採番のテスティモニアルに code を振る"""
    pending = db.query(Testimonial).filter(
        Testimonial.status == APPROVED,
        Testimonial.testimonial_code.is_(None),
    ).limit(limit).all()
    pending_ids = [t.id for t in pending]

    assigned = 0
    for testimonial_id in pending_ids:
        for _ in range(max_collisions):
            code = generate_testimonial_code()
            try:
                updated = db.query(Testimonial).filter(
                    Testimonial.id == testimonial_id,
                    Testimonial.testimonial_code.is_(None),
                ).update({"testimonial_code": code}, synchronize_session=False)
                if not updated:
                    # 他プロセスが採番済み
                    db.rollback()
                    break
                # 作成済みスナップショットの未設定 code を一度だけ埋める
                db.query(ApprovedTestimonial).filter(
                    ApprovedTestimonial.testimonial_id == testimonial_id,
                    ApprovedTestimonial.testimonial_code.is_(None),
                ).update({"testimonial_code": code}, synchronize_session=False)
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning(f"testimonial_code衝突、再採番: testimonial_id={testimonial_id}")
                continue
            assigned += 1
            logger.info(f"testimonial_code採番: testimonial_id={testimonial_id}, code={code}")
            break
        else:
            logger.error(f"testimonial_code採番失敗 (衝突上限): testimonial_id={testimonial_id}")
    return assigned


def backfill_missing_snapshots(db: Session, limit: int = 100) -> int:
    """承認済みなのにスナップショットが無いものを補完"""
    missing = db.query(Testimonial.id).outerjoin(
        ApprovedTestimonial, ApprovedTestimonial.testimonial_id == Testimonial.id
    ).filter(
        Testimonial.status == APPROVED,
        ApprovedTestimonial.id.is_(None),
    ).limit(limit).all()

    created = 0
    for (testimonial_id,) in missing:
        try:
            _, was_created = create_snapshot(db, testimonial_id, policy=NO_WAIT)
            created += int(was_created)
        except Exception as e:
            db.rollback()
            logger.error(f"スナップショット補完失敗: testimonial_id={testimonial_id} - {e}")
    return created
