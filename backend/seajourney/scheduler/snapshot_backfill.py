"""スナップショット未作成の承認済みテスティモニアルを補完"""
from seajourney.core.database import SessionLocal
from seajourney.services.testimonial_service import backfill_missing_snapshots
from seajourney.core.logging import get_logger

logger = get_logger(__name__)


def snapshot_backfill_job():
    db = SessionLocal()
    try:
        count = backfill_missing_snapshots(db)
        if count > 0:
            logger.info(f"スナップショット補完完了: {count}件")
    except Exception as e:
        db.rollback()
        logger.error(f"スナップショット補完エラー: {e}")
    finally:
        db.close()
