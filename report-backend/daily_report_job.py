"""
Daily Event Report job.

Triggered by the remote scheduler through POST /api/jobs/daily-event-report,
or run by hand:

    python daily_report_job.py

One CSV is built per run and mailed to each active recipient of the
"Daily Event Report" schedule, one at a time. A recipient that fails is
recorded and skipped; only failures outside the send loop abort the run.
Store and warehouse calls are synchronous and run in the threadpool.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi.concurrency import run_in_threadpool

from config import Settings
from database import DatabaseManager
from email_client import EmailClient, csv_attachment
from errors import ReportError
from recipients_store import (
    DAILY_EVENT_REPORT_NAME,
    RUN_ERROR,
    RUN_NO_RECIPIENTS,
    RUN_PARTIAL_SUCCESS,
    RUN_SUCCESS,
    RecipientStore,
)
from report_formatter import generate_event_csv, render_report_email, report_filename, report_subject
from reports import get_event_list_report

logger = logging.getLogger(__name__)


async def run_daily_event_report(
    store: RecipientStore,
    warehouse: DatabaseManager,
    email_client: EmailClient,
    host_user_id: int,
    report_date: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Build the event list report and email it to every active recipient.

    Returns a summary dict; success is False when there was nothing to do.
    Raises whatever aborted the run after recording status 'error'.
    """
    report_date = report_date or datetime.now(timezone.utc).date()
    logger.info(f"Starting daily event report job for {report_date.isoformat()}")

    try:
        report = await run_in_threadpool(store.get_active_report_by_name, DAILY_EVENT_REPORT_NAME)
        if report is None:
            logger.info("No active scheduled report found")
            return {"success": False, "message": "No active scheduled report found"}

        recipients = await run_in_threadpool(store.list_report_recipients, report["id"], active_only=True)
        logger.info(f"Found {len(recipients)} active recipients for '{report['name']}'")

        if not recipients:
            await run_in_threadpool(store.record_run, report["id"], RUN_NO_RECIPIENTS, "No active recipients found")
            return {"success": False, "message": "No active recipients found"}

        events = await run_in_threadpool(get_event_list_report, warehouse, host_user_id)
        logger.info(f"Found {len(events)} events")

        attachment = csv_attachment(report_filename(report_date), generate_event_csv(events))
        subject = report_subject(report_date)

        sent: List[str] = []
        failed: List[str] = []
        for recipient in recipients:
            address = recipient["email"]
            html = render_report_email(events, report_date, recipient_name=recipient.get("name") or "")
            try:
                await email_client.send(address, subject, html, attachments=[attachment])
                sent.append(address)
            except ReportError as e:
                logger.error(f"Failed to send report to {address}: {e.message}")
                failed.append(address)

        status = RUN_PARTIAL_SUCCESS if failed else RUN_SUCCESS
        error_message = f"Failed to send to: {', '.join(failed)}" if failed else None
        await run_in_threadpool(store.record_run, report["id"], status, error_message)

        logger.info(f"Daily event report job completed: {len(sent)} sent, {len(failed)} failed")
        summary: Dict[str, Any] = {
            "success": True,
            "emailsSent": len(sent),
            "emailsFailed": len(failed),
            "recipients": sent,
        }
        if failed:
            summary["errors"] = failed
        return summary

    except Exception as e:
        logger.error(f"Daily event report job failed: {e}")
        message = e.message if isinstance(e, ReportError) else str(e)
        try:
            await run_in_threadpool(store.record_run_by_name, DAILY_EVENT_REPORT_NAME, RUN_ERROR, message)
        except ReportError as update_error:
            logger.error(f"Failed to update error status: {update_error.message}")
        raise


async def _main() -> Dict[str, Any]:
    settings = Settings.from_env()
    warehouse = DatabaseManager.for_warehouse(settings)
    app_store = DatabaseManager.for_app_store(settings)
    email_client = EmailClient.from_settings(settings)
    try:
        return await run_daily_event_report(
            RecipientStore(app_store),
            warehouse,
            email_client,
            settings.default_host_user_id,
        )
    finally:
        await email_client.close()
        warehouse.dispose()
        app_store.dispose()


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    result = asyncio.run(_main())
    logger.info(f"Result: {result}")
