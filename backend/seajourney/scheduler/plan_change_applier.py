"""期限到来したダウングレード予約の射影反映 (Webhook取りこぼし時のフォールバック)"""
from datetime import datetime, timezone

from seajourney.core.database import SessionLocal
from seajourney.services.subscription_service import apply_elapsed_pending_changes
from seajourney.core.logging import get_logger

logger = get_logger(__name__)


def apply_pending_plan_changes():
    """スケジューラから呼ばれる: 期限到来したダウングレードを反映"""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    db = SessionLocal()
    try:
        count = apply_elapsed_pending_changes(db, now)
        if count > 0:
            logger.info(f"ダウングレード反映完了: {count}件")
    except Exception as e:
        db.rollback()
        logger.error(f"ダウングレード反映エラー: {e}")
    finally:
        db.close()
