import asyncio
from typing import Awaitable, Callable
from loguru import logger

from storepulse.config import AVAILABILITY_CHECK_INTERVAL_S, SLA_CHECK_INTERVAL_S
from storepulse.models import FinalReport, now_iso
from storepulse.pipeline import perform_item_availability_check, perform_store_sla_check


async def _every(name: str, interval_s: float, check: Callable[..., Awaitable[FinalReport]], **kwargs):
    """Run `check` forever, `interval_s` apart. Errors are logged and the loop keeps going."""
    while True:
        logger.info(f"Running scheduled {name}")
        try:
            report = await check(source="cron_job", **kwargs)
            if report.success:
                s = report.summary
                logger.info(
                    f"{name} completed: {s.total} checked, {s.successful} successful, "
                    f"{s.failed} failed, success rate {s.success_rate}%"
                )
            else:
                logger.warning(f"{name} failed: {report.message} ({report.error})")
        except Exception as e:
            logger.exception(f"Error during scheduled {name}: {e}")
        await asyncio.sleep(interval_s)


async def run_scheduler(
    sla_interval_s: float = SLA_CHECK_INTERVAL_S,
    availability_interval_s: float = AVAILABILITY_CHECK_INTERVAL_S,
):
    """Run the store SLA check and the item availability check on fixed intervals."""
    logger.info(f"Scheduler started at {now_iso()}:")
    logger.info(f"- Store SLA check: every {sla_interval_s}s")
    logger.info(f"- Item availability check: every {availability_interval_s}s")
    await asyncio.gather(
        _every("store SLA check", sla_interval_s, perform_store_sla_check),
        _every("item availability check", availability_interval_s, perform_item_availability_check),
    )
