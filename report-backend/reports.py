"""
Report Services - event payouts, price-tier breakdowns, payment search and
seat lookup on the warehouse cluster.

Query text lives in report_queries.py; this module runs it through a
DatabaseManager and shapes rows into the objects the API and the CSV
formatter consume.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from report_queries import (
    DateLike,
    SEAT_LOOKUP_TIMEZONE,
    build_event_list_query,
    build_payment_search_query,
    build_price_tier_breakdown_query,
    build_seat_lookup_query,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Upstream stores event start times four hours late. This is a data fix, not
# timezone math: keep it literal until the source data is corrected.
SEAT_START_CORRECTION = timedelta(hours=4)


def money(value: Any) -> Decimal:
    """Round a numeric/string/None amount to cents (half-up)."""
    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _as_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(Decimal(str(value)))


# ============================================================================
# EVENT REPORT
# ============================================================================

@dataclass
class PriceTierRow:
    price_tier_id: Any
    name: str
    payout_amount: Decimal
    tickets_sold: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priceTierId": self.price_tier_id,
            "priceTierName": self.name,
            "payoutAmount": float(self.payout_amount),
            "ticketsSold": self.tickets_sold,
        }


@dataclass
class EventReportRow:
    event_id: Any
    event_name: str
    payout_amount: Decimal
    tickets_sold: int
    price_tiers: Optional[List[PriceTierRow]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EventReportRow":
        return cls(
            event_id=row["eventId"],
            event_name=row.get("eventName") or f"Event #{row['eventId']}",
            payout_amount=money(row.get("payoutAmount")),
            tickets_sold=_as_int(row.get("ticketsSold")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "eventId": self.event_id,
            "eventName": self.event_name,
            "payoutAmount": float(self.payout_amount),
            "ticketsSold": self.tickets_sold,
        }
        if self.price_tiers is not None:
            data["priceTiers"] = [tier.to_dict() for tier in self.price_tiers]
        return data


def report_totals(events: Iterable[EventReportRow]) -> Tuple[Decimal, int]:
    """Totals over the already-rounded per-event values."""
    total_payout = Decimal("0.00")
    total_tickets = 0
    for event in events:
        total_payout += money(event.payout_amount)
        total_tickets += event.tickets_sold
    return total_payout, total_tickets


def group_price_tier_rows(rows: Sequence[Dict[str, Any]]) -> List[EventReportRow]:
    """
    Nest flat breakdown rows into events, keeping query order.

    A row with a NULL priceTierId only establishes the event; such events
    end up with an empty priceTiers list.
    """
    events: Dict[Any, EventReportRow] = {}
    for row in rows:
        event_id = row["eventId"]
        event = events.get(event_id)
        if event is None:
            event = EventReportRow.from_row(row)
            event.price_tiers = []
            events[event_id] = event

        if row.get("priceTierId") is None:
            continue

        event.price_tiers.append(
            PriceTierRow(
                price_tier_id=row["priceTierId"],
                name=row.get("priceTierName") or f"Tier #{row['priceTierId']}",
                payout_amount=money(row.get("priceTierPayout")),
                tickets_sold=_as_int(row.get("priceTierTicketsSold")),
            )
        )
    return list(events.values())


def get_event_list_report(
    warehouse,
    host_user_id: int,
    date_from: DateLike = None,
    date_to: DateLike = None,
) -> List[EventReportRow]:
    sql, params = build_event_list_query(host_user_id, date_from, date_to)
    logger.info(f"Event list report for host {host_user_id} ({date_from or '-'} .. {date_to or '-'})")
    rows = warehouse.fetch_all(sql, params, error_message="Failed to fetch event list report")
    return [EventReportRow.from_row(row) for row in rows]


def get_price_tier_report(
    warehouse,
    host_user_id: int,
    date_from: DateLike = None,
    date_to: DateLike = None,
) -> List[EventReportRow]:
    sql, params = build_price_tier_breakdown_query(host_user_id, date_from, date_to)
    logger.info(f"Price tier report for host {host_user_id} ({date_from or '-'} .. {date_to or '-'})")
    rows = warehouse.fetch_all(sql, params, error_message="Failed to fetch price tier report")
    return group_price_tier_rows(rows)


# ============================================================================
# PAYMENT SEARCH
# ============================================================================

def search_payments(
    warehouse,
    transaction_ids: Optional[Sequence[str]] = None,
    date_from: DateLike = None,
    date_to: DateLike = None,
    host_user_id: Optional[int] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[Dict[str, Any]]:
    sql, params = build_payment_search_query(
        transaction_ids=transaction_ids,
        date_from=date_from,
        date_to=date_to,
        host_user_id=host_user_id,
        limit=limit,
        offset=offset,
    )
    return warehouse.fetch_all(sql, params, error_message="Failed to query transactions")


def payment_summary(payment: Dict[str, Any], zip_code: str) -> Dict[str, Any]:
    """API shape for one enriched payment row."""
    metadata = payment.get("metadata")
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            metadata = None
    amount = payment.get("amount")
    return {
        "transactionId": payment.get("transaction_id"),
        "zipCode": zip_code,
        "createdAt": payment.get("created_at"),
        "amount": float(amount) if amount is not None else None,
        "status": payment.get("status"),
        "cardType": payment.get("card_type"),
        "lastFour": payment.get("last_four"),
        "ipAddress": metadata.get("ip_address") if isinstance(metadata, dict) else None,
        "paymentId": payment.get("id"),
        "userId": payment.get("user_id"),
        "eventId": payment.get("event_id"),
        "eventAttendeeId": payment.get("event_attendee_id"),
    }


async def enrich_payments_with_zip(payments: Sequence[Dict[str, Any]], gateway) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Attach a billing ZIP to each payment, one gateway call at a time.

    lookup_zip() reports gateway failures as sentinel strings; only a row
    that cannot be shaped at all ends up in errors.
    """
    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    for index, payment in enumerate(payments):
        if index > 0:
            await gateway.pause()
        transaction_id = payment.get("transaction_id")
        try:
            zip_code = await gateway.lookup_zip(transaction_id)
            results.append(payment_summary(payment, zip_code))
        except (TypeError, ValueError) as e:
            logger.error(f"Could not enrich payment {payment.get('id')}: {e}")
            errors.append({"transactionId": transaction_id, "error": str(e)})
    return results, errors


# ============================================================================
# SEAT LOOKUP
# ============================================================================

@dataclass
class SeatLookupResult:
    event_name: str
    event_start_date: str
    event_start_time: str
    payment_id: Any
    amount: float
    payer_name: Optional[str]
    seat_info: Optional[str]
    payer_email: Optional[str] = None
    transaction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventName": self.event_name,
            "eventStartDate": self.event_start_date,
            "eventStartTime": self.event_start_time,
            "paymentId": self.payment_id,
            "amount": self.amount,
            "payerName": self.payer_name,
            "payerEmail": self.payer_email,
            "seatInfo": self.seat_info,
            "transactionId": self.transaction_id,
        }


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # Naive timestamps are read as UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_event_start(start_at: Any, tz_name: str = SEAT_LOOKUP_TIMEZONE) -> Tuple[str, str]:
    """
    Apply the fixed -4h correction, then render MM/DD/YYYY and h:MM AM/PM.

    Returns ("", "") when there is no start time.
    """
    if start_at is None or start_at == "":
        return "", ""
    corrected = _parse_timestamp(start_at) - SEAT_START_CORRECTION
    local = corrected.astimezone(ZoneInfo(tz_name))
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return local.strftime("%m/%d/%Y"), f"{hour}:{local.minute:02d} {meridiem}"


def _seat_label(seat: Dict[str, Any]) -> Optional[str]:
    seat_obj = seat.get("seat_obj")
    if isinstance(seat_obj, str):
        try:
            seat_obj = json.loads(seat_obj)
        except ValueError:
            seat_obj = None

    components = seat_obj.get("components") if isinstance(seat_obj, dict) else None
    if isinstance(components, list) and components:
        return ", ".join(f"{c.get('label')}: {c.get('value')}" for c in components)

    seat_id = seat.get("seat_id")
    return str(seat_id) if seat_id else None


def format_seat_info(seats: Any) -> Optional[str]:
    """
    One line per seat: structured components when present, else seat_id.

    Seats with neither are dropped; None when nothing is left.
    """
    if isinstance(seats, str):
        try:
            seats = json.loads(seats)
        except ValueError:
            return None
    if not isinstance(seats, list) or not seats:
        return None

    labels = [label for label in (_seat_label(s) for s in seats if isinstance(s, dict)) if label]
    return "\n".join(labels) if labels else None


def _payer_name(first_name: Optional[str], last_name: Optional[str]) -> Optional[str]:
    if first_name and last_name:
        return f"{first_name} {last_name}"
    return first_name or last_name or None


def shape_seat_row(row: Dict[str, Any], tz_name: str = SEAT_LOOKUP_TIMEZONE) -> SeatLookupResult:
    start_date, start_time = format_event_start(row.get("start_at"), tz_name)
    amount = row.get("amount")
    return SeatLookupResult(
        event_name=row.get("event_name") or f"Event #{row.get('event_id')}",
        event_start_date=start_date,
        event_start_time=start_time,
        payment_id=row.get("payment_id"),
        amount=float(amount) if amount is not None else 0.0,
        payer_name=_payer_name(row.get("first_name"), row.get("last_name")),
        seat_info=format_seat_info(row.get("seats")),
    )


def lookup_seats(warehouse, host_user_id: int, search: str) -> List[SeatLookupResult]:
    sql, params = build_seat_lookup_query(host_user_id, search)
    logger.info(f"Seat lookup for host {host_user_id}, pattern {params['pattern']!r}")
    rows = warehouse.fetch_all(sql, params, error_message="Failed to look up seats")
    logger.info(f"Seat lookup returned {len(rows)} rows")
    return [shape_seat_row(row) for row in rows]
