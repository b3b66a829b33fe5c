"""
Report Formatter - CSV attachments and HTML email bodies.

CSV output is deterministic: same rows in the same order always give the
same bytes. Fields containing a comma or a double quote are quoted with
embedded quotes doubled; lines end with "\\n"; a blank line precedes the
Total row. Totals are summed from the per-row values after rounding to
cents, so the Total row always equals what a reader adds up by hand.
"""

import csv
import html
import io
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from reports import EventReportRow, money, report_totals

EVENT_CSV_HEADER = ["Event ID", "Event Name", "Payout Amount", "Tickets Sold"]
PRICE_TIER_CSV_HEADER = ["Event ID", "Event Name", "Price Tier", "Payout Amount", "Tickets Sold"]


def _writer(buffer: io.StringIO):
    return csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)


def _amount(value) -> str:
    return f"{money(value):.2f}"


def generate_event_csv(events: Sequence[EventReportRow]) -> str:
    """One row per event, then a blank line and the Total row."""
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(EVENT_CSV_HEADER)

    for event in events:
        writer.writerow([event.event_id, event.event_name, _amount(event.payout_amount), event.tickets_sold])

    total_payout, total_tickets = report_totals(events)
    writer.writerow([])
    writer.writerow(["Total", "", _amount(total_payout), total_tickets])
    return buffer.getvalue()


def generate_price_tier_csv(events: Sequence[EventReportRow]) -> str:
    """
    One row per price tier. Events without tier sales still get one row
    (empty tier name) carrying the event totals.
    """
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(PRICE_TIER_CSV_HEADER)

    total_payout = Decimal("0.00")
    total_tickets = 0
    for event in events:
        tiers = event.price_tiers or []
        if not tiers:
            writer.writerow([event.event_id, event.event_name, "", _amount(event.payout_amount), event.tickets_sold])
            total_payout += money(event.payout_amount)
            total_tickets += event.tickets_sold
            continue
        for tier in tiers:
            writer.writerow([event.event_id, event.event_name, tier.name, _amount(tier.payout_amount), tier.tickets_sold])
            total_payout += money(tier.payout_amount)
            total_tickets += tier.tickets_sold

    writer.writerow([])
    writer.writerow(["Total", "", "", _amount(total_payout), total_tickets])
    return buffer.getvalue()


def generate_report_csv(events: Sequence[EventReportRow], include_price_tiers: bool = False) -> str:
    if include_price_tiers:
        return generate_price_tier_csv(events)
    return generate_event_csv(events)


def report_filename(report_date: date, host_user_id: Optional[int] = None) -> str:
    if host_user_id is not None:
        return f"event-report-{host_user_id}-{report_date.isoformat()}.csv"
    return f"event-report-{report_date.isoformat()}.csv"


def format_currency(value) -> str:
    return f"${money(value):,.2f}"


def render_report_email(
    events: List[EventReportRow],
    report_date: date,
    recipient_name: Optional[str] = None,
    host_user_id: Optional[int] = None,
) -> str:
    """HTML body with the summary block; the full table travels as CSV."""
    total_payout, total_tickets = report_totals(events)

    if host_user_id is not None:
        intro = f"<p>Please find attached the event list report for host ID {int(host_user_id)}.</p>"
    else:
        intro = "<p>Please find attached your daily event list report.</p>"

    greeting = ""
    if recipient_name is not None:
        greeting = f"<p>Hi {html.escape(recipient_name)},</p>" if recipient_name else "<p>Hi,</p>"

    return f"""
        <h2>Event List Report</h2>
        {greeting}
        {intro}

        <h3>Summary</h3>
        <ul>
          <li><strong>Total Events:</strong> {len(events)}</li>
          <li><strong>Total Payout Amount:</strong> {format_currency(total_payout)}</li>
          <li><strong>Total Tickets Sold:</strong> {total_tickets:,}</li>
        </ul>

        <p>The complete details are available in the attached CSV file.</p>

        <hr />
        <p style="color: #666; font-size: 12px;">
          Generated by Event Reporting Tool<br/>
          Report Date: {report_date.isoformat()}
        </p>
    """


def report_subject(report_date: date) -> str:
    return f"Event List Report - {report_date.isoformat()}"
