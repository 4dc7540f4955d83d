from apscheduler.schedulers.blocking import BlockingScheduler
from nfe_agil.core.cron import run_daily_sync
from nfe_agil.logs import get_logger
from nfe_agil.settings import settings
from nfe_agil.store.db import SessionLocal

logger = get_logger("nfe.cron")

sched = BlockingScheduler()

@sched.scheduled_job("interval", minutes=settings.JOB_INTERVAL_MINUTES, max_instances=1, coalesce=True)
def sync_all():
    # empresas com 656 ativo são puladas dentro de run_daily_sync
    with SessionLocal() as db:
        res = run_daily_sync(db)
    logger.info(f"[CRON] status={res['status']} importadas={res['totalProcessed']} "
                f"empresas={res['empresasProcessadas']} t={res['duration']}")

if __name__ == "__main__":
    sched.start()
