"""Scheduler エントリポイント: python -m seajourney.scheduler で起動"""
import signal
import sys
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from seajourney.core.config import settings
from seajourney.core.logging import setup_logging, get_logger
from seajourney.scheduler.testimonial_codes import assign_codes_job
from seajourney.scheduler.snapshot_backfill import snapshot_backfill_job
from seajourney.scheduler.plan_change_applier import apply_pending_plan_changes

setup_logging(debug=settings.DEBUG)
logger = get_logger("scheduler")

scheduler = BlockingScheduler(timezone="UTC")


def signal_handler(sig, frame):
    logger.info("Scheduler停止シグナル受信")
    scheduler.shutdown(wait=False)
    sys.exit(0)


signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)


def main():
    logger.info("Scheduler起動")

    # 毎分: testimonial_code 採番
    scheduler.add_job(
        assign_codes_job,
        CronTrigger(minute="*", timezone="UTC"),
        id="testimonial_code_assigner",
        max_instances=1,
    )

    # 10分ごと: スナップショット補完
    scheduler.add_job(
        snapshot_backfill_job,
        CronTrigger(minute="*/10", timezone="UTC"),
        id="snapshot_backfill",
        max_instances=1,
    )

    # 5分ごと: ダウングレード予約の射影反映
    scheduler.add_job(
        apply_pending_plan_changes,
        CronTrigger(minute="*/5", timezone="UTC"),
        id="pending_plan_change_applier",
        max_instances=1,
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler終了")


if __name__ == "__main__":
    main()
