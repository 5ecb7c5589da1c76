"""承認済みテスティモニアルへの testimonial_code 採番"""
from seajourney.core.database import SessionLocal
from seajourney.services.testimonial_service import assign_testimonial_codes
from seajourney.core.logging import get_logger

logger = get_logger(__name__)


def assign_codes_job():
    db = SessionLocal()
    try:
        count = assign_testimonial_codes(db)
        if count > 0:
            logger.info(f"testimonial_code採番完了: {count}件")
    except Exception as e:
        db.rollback()
        logger.error(f"testimonial_code採番エラー: {e}")
    finally:
        db.close()
