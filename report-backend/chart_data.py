"""
Chart Data - presets over enriched transaction rows.

Input rows use the query-transactions result shape (createdAt, amount,
status, cardType, zipCode ...). Every preset returns a list of plain dicts
ready for JSON; dates are ISO (YYYY-MM-DD, UTC).
"""

import logging
import math
from typing import Any, Callable, Dict, Iterable, List

import pandas as pd

from errors import ValidationError

logger = logging.getLogger(__name__)

CHART_PRESETS = [
    {"label": "Transactions Over Time", "value": "transactions-over-time", "type": "line",
     "description": "Show transaction count by date"},
    {"label": "Amount Distribution", "value": "amount-distribution", "type": "bar",
     "description": "Show distribution of payment amounts"},
    {"label": "Payment Status Breakdown", "value": "status-breakdown", "type": "pie",
     "description": "Show breakdown by payment status"},
    {"label": "Daily Revenue", "value": "daily-revenue", "type": "area",
     "description": "Show cumulative revenue by day"},
    {"label": "Card Type Distribution", "value": "card-type-distribution", "type": "pie",
     "description": "Show breakdown by card type"},
    {"label": "Top ZIP Codes", "value": "top-zip-codes", "type": "bar",
     "description": "Show top 10 ZIP codes by transaction count"},
]

AMOUNT_BUCKETS = [0, 50, 100, 250, 500, math.inf]
AMOUNT_BUCKET_LABELS = ["$0-50", "$50-100", "$100-250", "$250-500", "$500+"]

TOP_ZIP_LIMIT = 10
UNKNOWN = "Unknown"

_COLUMNS = ["createdAt", "amount", "status", "cardType", "zipCode"]


def _frame(results: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame.from_records(list(results)).reindex(columns=_COLUMNS)


def _dates(series: pd.Series) -> pd.Series:
    """Unparseable or missing timestamps become NaT."""
    return pd.to_datetime(series, errors="coerce", utc=True, format="ISO8601")


def _amounts(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series, errors="coerce")


def _percentage(count: int, total: int) -> int:
    # Half-up, matching what the dashboard displays
    return int(math.floor(count * 100 / total + 0.5)) if total else 0


def _labelled_counts(series: pd.Series, key: str) -> List[Dict[str, Any]]:
    """Count per label in first-seen order; missing/empty labels count as Unknown."""
    labels = series.fillna("").astype(str).replace("", UNKNOWN)
    counts = labels.groupby(labels, sort=False).size()
    total = len(labels)
    return [
        {key: label, "count": int(count), "percentage": _percentage(int(count), total)}
        for label, count in counts.items()
    ]


# ============================================================================
# PRESETS
# ============================================================================

def transactions_over_time(results: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    dates = _dates(_frame(results)["createdAt"]).dropna()
    if dates.empty:
        return []
    counts = dates.dt.strftime("%Y-%m-%d").value_counts().sort_index()
    return [{"date": day, "transactions": int(count)} for day, count in counts.items()]


def amount_distribution(results: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Buckets are lower-inclusive; zero and missing amounts are not counted."""
    amounts = _amounts(_frame(results)["amount"])
    amounts = amounts[amounts.notna() & (amounts != 0)]
    buckets = pd.cut(amounts, bins=AMOUNT_BUCKETS, right=False, labels=AMOUNT_BUCKET_LABELS)
    counts = buckets.value_counts().reindex(AMOUNT_BUCKET_LABELS, fill_value=0)
    return [{"range": label, "count": int(counts[label])} for label in AMOUNT_BUCKET_LABELS]


def status_breakdown(results: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _labelled_counts(_frame(results)["status"], "status")


def daily_revenue(results: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    df = _frame(results)
    df = df.assign(day=_dates(df["createdAt"]), amount=_amounts(df["amount"]))
    df = df[df["day"].notna() & df["amount"].notna() & (df["amount"] != 0)]
    if df.empty:
        return []

    revenue = df.groupby(df["day"].dt.strftime("%Y-%m-%d"))["amount"].sum().sort_index()
    cumulative = revenue.cumsum()
    return [
        {"date": day, "revenue": round(float(revenue[day]), 2), "cumulative": round(float(cumulative[day]), 2)}
        for day in revenue.index
    ]


def card_type_distribution(results: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _labelled_counts(_frame(results)["cardType"], "cardType")


def top_zip_codes(results: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Top ZIPs by count; ties keep first-seen order. "-" and blanks are ignored."""
    zips = _frame(results)["zipCode"].dropna().astype(str)
    zips = zips[(zips != "-") & (zips != "")]
    if zips.empty:
        return []
    counts = zips.groupby(zips, sort=False).size().sort_values(ascending=False, kind="stable")
    return [{"zipCode": zip_code, "count": int(count)} for zip_code, count in counts.head(TOP_ZIP_LIMIT).items()]


PRESET_HANDLERS: Dict[str, Callable[[Iterable[Dict[str, Any]]], List[Dict[str, Any]]]] = {
    "transactions-over-time": transactions_over_time,
    "amount-distribution": amount_distribution,
    "status-breakdown": status_breakdown,
    "daily-revenue": daily_revenue,
    "card-type-distribution": card_type_distribution,
    "top-zip-codes": top_zip_codes,
}


def get_chart_data(preset: str, results: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    handler = PRESET_HANDLERS.get(preset)
    if handler is None:
        raise ValidationError(
            f"Unknown chart preset: {preset}",
            extra={"availablePresets": list(PRESET_HANDLERS)},
        )
    data = handler(results)
    logger.info(f"Chart preset '{preset}' produced {len(data)} points")
    return data


def get_preset(preset: str) -> Dict[str, Any]:
    for item in CHART_PRESETS:
        if item["value"] == preset:
            return item
    raise ValidationError(f"Unknown chart preset: {preset}")
