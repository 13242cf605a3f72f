"""
Celery tasks for the stock ledger.

Tasks:
    - generate_daily_movement_report: Yesterday's movement totals (Celery Beat)
"""
import logging
from datetime import date, datetime, time, timedelta

from celery import shared_task
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task
def generate_daily_movement_report(day: str = None):
    """
    Summarize stock movements for one day (yesterday by default).

    Scheduled daily via Celery Beat.

    Args:
        day: Optional ISO date (YYYY-MM-DD) to report on

    Returns:
        Dict with the date and per-kind count/total quantity
    """
    from .selectors import transaction_summary

    if day:
        report_date = date.fromisoformat(day)
    else:
        report_date = timezone.localdate() - timedelta(days=1)

    tz = timezone.get_current_timezone()
    start = timezone.make_aware(datetime.combine(report_date, time.min), tz)
    end = start + timedelta(days=1) - timedelta(microseconds=1)

    summary = transaction_summary(start_date=start, end_date=end)

    lines = [
        f"{kind}: {totals['count']} movement(s), {totals['total_quantity']} unit(s)"
        for kind, totals in summary.items()
    ]
    report = f"""
    ===============================================
    DAILY STOCK MOVEMENT REPORT - {report_date}
    ===============================================
    {(chr(10) + '    ').join(lines)}
    ===============================================
    """

    logger.info(report)

    return {'date': report_date.isoformat(), 'summary': summary}
