"""
Report Query Builder
====================

Fixed, parameterized SQL for the reporting screens. Every builder returns
(sql, params) ready for DatabaseManager.fetch_all(); no user text is ever
interpolated into the SQL itself.

PAYOUT RULES (shared by every payout figure):
    payout = amount - refund_amount - every fee column
    counted only when:
      - status is not void / refund / cancel / transfer
      - no payment plan is still in progress
      - check/wire payments have been marked paid
      - a payment with no instrument recorded is not counted

TICKETS:
    tickets sold = COALESCE(package_quantity, 1) * (quantity_sold - quantity_exchanged_sent)

PRORATION (price-tier breakdown):
    tier share of a payment = net payout * item quantity / total item quantity
    A payment whose items total zero contributes zero (NULLIF guard).
"""

from datetime import date
from typing import Any, Dict, Optional, Sequence, Tuple, Union

DateLike = Union[str, date, None]

EXCLUDED_PAYMENT_STATUSES = ("void", "refund", "cancel", "transfer")

FEE_COLUMNS = (
    "guest_processing_fees",
    "host_processing_fees",
    "guest_squadup_fees",
    "host_squadup_fees",
    "insurance_premium",
    "shipping_fees",
)

MAX_SEARCH_LIMIT = 1000

# Stored start_at values are off by four hours upstream; see reports.py
SEAT_LOOKUP_TIMEZONE = "America/New_York"


def _net_payout_expression(alias: str = "p") -> str:
    terms = [f"{alias}.amount", f"{alias}.refund_amount"] + [f"{alias}.{c}" for c in FEE_COLUMNS]
    return " - ".join(terms)


def _qualifying_payment_filter(alias: str = "p") -> str:
    statuses = ", ".join(f"'{s}'" for s in EXCLUDED_PAYMENT_STATUSES)
    return (
        f"{alias}.status NOT IN ({statuses})\n"
        f"        AND ({alias}.payment_plan_in_progress IS NULL OR {alias}.payment_plan_in_progress = false)\n"
        f"        AND ({alias}.payment_instrument != 'check_wire'"
        f" OR ({alias}.payment_instrument = 'check_wire' AND {alias}.check_wire_paid_at IS NOT NULL))"
    )


def _tickets_expression(alias: str = "pt") -> str:
    return (
        f"COALESCE({alias}.package_quantity, 1) * "
        f"({alias}.quantity_sold - {alias}.quantity_exchanged_sent)"
    )


def _event_filters(
    host_user_id: int,
    date_from: DateLike,
    date_to: DateLike,
    alias: str = "e",
) -> Tuple[str, Dict[str, Any]]:
    clauses = [f"{alias}.user_id = :host_user_id"]
    params: Dict[str, Any] = {"host_user_id": int(host_user_id)}
    if date_from:
        clauses.append(f"{alias}.start_at::date >= CAST(:date_from AS date)")
        params["date_from"] = str(date_from)
    if date_to:
        clauses.append(f"{alias}.start_at::date <= CAST(:date_to AS date)")
        params["date_to"] = str(date_to)
    return "\n      AND ".join(clauses), params


# ============================================================================
# EVENT LIST REPORT
# ============================================================================

def build_event_list_query(
    host_user_id: int,
    date_from: DateLike = None,
    date_to: DateLike = None,
) -> Tuple[str, Dict[str, Any]]:
    """Per-event payout and tickets for one host, ordered by event name."""
    where, params = _event_filters(host_user_id, date_from, date_to)
    sql = f"""
    SELECT
      e.id AS "eventId",
      e.name AS "eventName",
      COALESCE(payout_sum.total_payout, 0) AS "payoutAmount",
      COALESCE(tickets_sum.total_tickets, 0) AS "ticketsSold"
    FROM events e
    LEFT JOIN (
      SELECT
        p.event_id,
        ROUND(SUM({_net_payout_expression("p")}), 2) AS total_payout
      FROM payments p
      WHERE {_qualifying_payment_filter("p")}
      GROUP BY p.event_id
    ) payout_sum ON payout_sum.event_id = e.id
    LEFT JOIN (
      SELECT
        pt.event_id,
        SUM({_tickets_expression("pt")}) AS total_tickets
      FROM price_tiers pt
      GROUP BY pt.event_id
    ) tickets_sum ON tickets_sum.event_id = e.id
    WHERE {where}
    ORDER BY e.name
    """
    return sql, params


def build_price_tier_breakdown_query(
    host_user_id: int,
    date_from: DateLike = None,
    date_to: DateLike = None,
) -> Tuple[str, Dict[str, Any]]:
    """
    Event totals plus one row per price tier with sales.

    Rows come back flat (event columns repeated per tier); events without
    tier sales produce a single row whose priceTier* columns are NULL.
    Use reports.group_price_tier_rows() to nest them.
    """
    where, params = _event_filters(host_user_id, date_from, date_to)
    sql = f"""
    WITH host_events AS (
      SELECT e.id, e.name
      FROM events e
      WHERE {where}
    ),
    qualifying_payments AS (
      SELECT
        p.id,
        p.event_id,
        ({_net_payout_expression("p")}) AS net_payout
      FROM payments p
      JOIN host_events he ON he.id = p.event_id
      WHERE {_qualifying_payment_filter("p")}
    ),
    payment_quantities AS (
      SELECT pi.payment_id, SUM(pi.quantity) AS total_quantity
      FROM payment_items pi
      JOIN qualifying_payments qp ON qp.id = pi.payment_id
      GROUP BY pi.payment_id
    ),
    tier_payouts AS (
      SELECT
        pi.price_tier_id,
        SUM(COALESCE(qp.net_payout * pi.quantity / NULLIF(pq.total_quantity, 0), 0)) AS prorated_payout
      FROM payment_items pi
      JOIN qualifying_payments qp ON qp.id = pi.payment_id
      JOIN payment_quantities pq ON pq.payment_id = pi.payment_id
      GROUP BY pi.price_tier_id
    ),
    tier_rows AS (
      SELECT
        pt.id,
        pt.event_id,
        pt.name,
        {_tickets_expression("pt")} AS tickets_sold,
        tp.prorated_payout
      FROM price_tiers pt
      JOIN host_events he ON he.id = pt.event_id
      LEFT JOIN tier_payouts tp ON tp.price_tier_id = pt.id
      WHERE {_tickets_expression("pt")} <> 0
         OR tp.prorated_payout IS NOT NULL
    ),
    event_payouts AS (
      SELECT qp.event_id, ROUND(SUM(qp.net_payout), 2) AS total_payout
      FROM qualifying_payments qp
      GROUP BY qp.event_id
    ),
    event_tickets AS (
      SELECT pt.event_id, SUM({_tickets_expression("pt")}) AS total_tickets
      FROM price_tiers pt
      JOIN host_events he ON he.id = pt.event_id
      GROUP BY pt.event_id
    )
    SELECT
      he.id AS "eventId",
      he.name AS "eventName",
      COALESCE(ep.total_payout, 0) AS "payoutAmount",
      COALESCE(et.total_tickets, 0) AS "ticketsSold",
      tr.id AS "priceTierId",
      tr.name AS "priceTierName",
      tr.tickets_sold AS "priceTierTicketsSold",
      ROUND(COALESCE(tr.prorated_payout, 0), 2) AS "priceTierPayout"
    FROM host_events he
    LEFT JOIN event_payouts ep ON ep.event_id = he.id
    LEFT JOIN event_tickets et ON et.event_id = he.id
    LEFT JOIN tier_rows tr ON tr.event_id = he.id
    ORDER BY he.name, he.id, tr.id
    """
    return sql, params


# ============================================================================
# PAYMENT SEARCH (FDW tables)
# ============================================================================

def build_payment_search_query(
    transaction_ids: Optional[Sequence[str]] = None,
    date_from: DateLike = None,
    date_to: DateLike = None,
    host_user_id: Optional[int] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> Tuple[str, Dict[str, Any]]:
    """
    Payments joined to their event host.

    Columns are listed explicitly: the FDW definition carries columns that
    no longer exist on the remote table.
    """
    sql = """
    SELECT
      p.id,
      p.transaction_id,
      p.status,
      p.name_on_card,
      p.card_type,
      p.last_four,
      p.amount,
      p.created_at,
      p.user_id,
      p.event_id,
      p.event_attendee_id,
      p.shipping_address_id,
      p.metadata,
      e.user_id AS host_user_id
    FROM payments_fdw p
    LEFT JOIN events_fdw e ON p.event_id = e.id
    WHERE 1=1
    """
    params: Dict[str, Any] = {}

    if transaction_ids:
        sql += " AND p.transaction_id = ANY(:transaction_ids)"
        params["transaction_ids"] = list(transaction_ids)

    if date_from:
        sql += " AND p.created_at::date >= CAST(:date_from AS date)"
        params["date_from"] = str(date_from)

    if date_to:
        sql += " AND p.created_at::date <= CAST(:date_to AS date)"
        params["date_to"] = str(date_to)

    if host_user_id:
        sql += " AND e.user_id = :host_user_id"
        params["host_user_id"] = int(host_user_id)

    sql += " ORDER BY p.created_at DESC"

    if limit:
        sql += " LIMIT :limit"
        params["limit"] = min(int(limit), MAX_SEARCH_LIMIT)

    if offset:
        sql += " OFFSET :offset"
        params["offset"] = int(offset)

    return sql, params


# ============================================================================
# SEAT LOOKUP
# ============================================================================

def build_seat_lookup_query(host_user_id: int, search: str) -> Tuple[str, Dict[str, Any]]:
    """
    Payments for one host whose attendee name matches the search term.

    Join order starts from the host's events so the events.user_id index is
    used; the name filter sits in the attendee JOIN condition.
    """
    sql = f"""
    SELECT
      p.id AS payment_id,
      p.amount,
      p.created_at,
      p.event_id,
      (e.start_at AT TIME ZONE '{SEAT_LOOKUP_TIMEZONE}') AS start_at,
      e.name AS event_name,
      ea.first_name,
      ea.last_name,
      json_agg(
        json_build_object(
          'seat_obj', ag.seat_obj,
          'seat_id', ag.seat_id
        ) ORDER BY ag.id
      ) FILTER (WHERE ag.id IS NOT NULL) AS seats
    FROM events e
    INNER JOIN payments p ON p.event_id = e.id AND p.event_attendee_id IS NOT NULL
    INNER JOIN event_attendees ea ON ea.id = p.event_attendee_id
      AND (
        LOWER(ea.first_name) LIKE LOWER(:pattern)
        OR LOWER(ea.last_name) LIKE LOWER(:pattern)
        OR LOWER(CONCAT(ea.first_name, ' ', ea.last_name)) LIKE LOWER(:pattern)
      )
    LEFT JOIN attendee_guests ag ON ag.payment_id = p.id AND ag.event_attendee_id = ea.id
    WHERE e.user_id = :host_user_id
    GROUP BY p.id, p.amount, p.created_at, p.event_id, e.start_at, e.name, ea.first_name, ea.last_name
    ORDER BY p.created_at DESC
    """
    return sql, {"host_user_id": int(host_user_id), "pattern": f"%{search}%"}
