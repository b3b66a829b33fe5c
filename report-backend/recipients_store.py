"""
Recipient & Schedule Store
==========================

Reads and writes the application database: report recipients, scheduled
reports and the many-to-many association between them.

WHAT THIS IS:
- Parameterized SQL over a writable DatabaseManager
- Unique/check violations surfaced as 409/400 via classify_database_error

WHAT THIS IS NOT:
- A scheduler (last_run_* columns are only bookkeeping for the daily job)
- An ORM (rows come back as plain dicts, shaped by the API layer)
"""

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Stricter than email_client.EMAIL_PATTERN: TLD of two letters or more
RECIPIENT_EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

DUPLICATE_EMAIL_MESSAGE = "This email already exists"
INVALID_CRON_MESSAGE = "Invalid cron expression format"

DAILY_EVENT_REPORT_NAME = "Daily Event Report"

# Run outcomes written by the daily job
RUN_SUCCESS = "success"
RUN_PARTIAL_SUCCESS = "partial_success"
RUN_NO_RECIPIENTS = "no_recipients"
RUN_ERROR = "error"

RECIPIENT_COLUMNS = "id, email, name, organization_id, is_active, created_at, updated_at"

SCHEDULED_REPORT_COLUMNS = """
    id, name, description, cron_expression, schedule_description, report_type,
    filter_params, is_active, trigger_job_id, last_run_at, last_run_status,
    last_run_error, created_at, updated_at
"""

# Only these columns may be changed through update_scheduled_report()
SCHEDULED_REPORT_UPDATABLE = ("cron_expression", "schedule_description", "is_active")


def validate_recipient_email(email: Any) -> str:
    if not email:
        raise ValidationError("Email is required")
    if not isinstance(email, str) or not RECIPIENT_EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")
    return email


class RecipientStore:
    """Application-store operations used by the recipients/schedule endpoints and the daily job"""

    def __init__(self, db):
        self.db = db

    # ========================================================================
    # RECIPIENTS
    # ========================================================================

    def list_recipients(self) -> List[Dict[str, Any]]:
        return self.db.fetch_all(
            f"SELECT {RECIPIENT_COLUMNS} FROM report_recipients ORDER BY created_at DESC",
            error_message="Failed to fetch recipients",
        )

    def create_recipient(
        self,
        email: Any,
        name: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Insert a recipient and join it to every active scheduled report.

        Both inserts share one transaction; a failure in either rolls back
        the recipient too.

        Returns:
            {"recipient": row, "addedToReports": n}
        """
        email = validate_recipient_email(email)

        with self.db.transaction(
            error_message="Failed to create recipient",
            conflict_message=DUPLICATE_EMAIL_MESSAGE,
        ) as conn:
            recipient = dict(
                conn.execute(
                    text(
                        "INSERT INTO report_recipients (email, name, organization_id, is_active) "
                        "VALUES (:email, :name, :organization_id, true) "
                        f"RETURNING {RECIPIENT_COLUMNS}"
                    ),
                    {"email": email, "name": name or None, "organization_id": organization_id or None},
                ).mappings().one()
            )

            joined = conn.execute(
                text(
                    """
                    INSERT INTO scheduled_report_recipients (scheduled_report_id, recipient_id)
                    SELECT sr.id, :recipient_id
                    FROM scheduled_reports sr
                    WHERE sr.is_active = true
                    ON CONFLICT (scheduled_report_id, recipient_id) DO NOTHING
                    RETURNING scheduled_report_id
                    """
                ),
                {"recipient_id": recipient["id"]},
            ).fetchall()

        logger.info(f"Recipient {email} created, joined {len(joined)} active reports")
        return {"recipient": recipient, "addedToReports": len(joined)}

    def update_recipient(
        self,
        recipient_id: Any,
        email: Optional[str] = None,
        name: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Partial update: None leaves the column as it is."""
        if not recipient_id:
            raise ValidationError("Recipient ID is required")

        rows = self.db.execute(
            f"""
            UPDATE report_recipients
            SET email = COALESCE(:email, email),
                name = COALESCE(:name, name),
                is_active = COALESCE(:is_active, is_active)
            WHERE id = :id
            RETURNING {RECIPIENT_COLUMNS}
            """,
            {"id": recipient_id, "email": email, "name": name, "is_active": is_active},
            error_message="Failed to update recipient",
            conflict_message=DUPLICATE_EMAIL_MESSAGE,
        )
        if not rows:
            raise NotFoundError("Recipient not found")
        return rows[0]

    def delete_recipient(self, recipient_id: Any) -> None:
        if not recipient_id:
            raise ValidationError("Recipient ID is required")

        rows = self.db.execute(
            "DELETE FROM report_recipients WHERE id = :id RETURNING id",
            {"id": recipient_id},
            error_message="Failed to delete recipient",
        )
        if not rows:
            raise NotFoundError("Recipient not found")
        logger.info(f"Recipient {recipient_id} deleted")

    # ========================================================================
    # SCHEDULED REPORTS
    # ========================================================================

    def list_scheduled_reports(self) -> List[Dict[str, Any]]:
        return self.db.fetch_all(
            f"SELECT {SCHEDULED_REPORT_COLUMNS} FROM scheduled_reports ORDER BY name",
            error_message="Failed to fetch scheduled reports",
        )

    def update_scheduled_report(self, report_id: Any, **fields) -> Dict[str, Any]:
        """
        Update only the provided fields (cron_expression,
        schedule_description, is_active). Unknown keys are ignored; passing
        none of the known ones is a 400.
        """
        if not report_id:
            raise ValidationError("Report ID is required")

        updates = {key: fields[key] for key in SCHEDULED_REPORT_UPDATABLE if key in fields}
        if not updates:
            raise ValidationError("No fields to update")

        assignments = ", ".join(f"{column} = :{column}" for column in updates)
        params = dict(updates, id=report_id)

        rows = self.db.execute(
            f"UPDATE scheduled_reports SET {assignments} WHERE id = :id RETURNING *",
            params,
            error_message="Failed to update scheduled report",
            check_message=INVALID_CRON_MESSAGE,
        )
        if not rows:
            raise NotFoundError("Scheduled report not found")
        logger.info(f"Scheduled report {report_id} updated: {', '.join(updates)}")
        return rows[0]

    def get_active_report_by_name(self, name: str = DAILY_EVENT_REPORT_NAME) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            """
            SELECT id, name, description
            FROM scheduled_reports
            WHERE is_active = true
              AND name = :name
            LIMIT 1
            """,
            {"name": name},
            error_message="Failed to fetch scheduled report",
        )

    def record_run(self, report_id: Any, status: str, error: Optional[str] = None) -> None:
        self.db.execute(
            """
            UPDATE scheduled_reports
            SET last_run_at = NOW(),
                last_run_status = :status,
                last_run_error = :error
            WHERE id = :id
            """,
            {"id": report_id, "status": status, "error": error},
            error_message="Failed to record report run",
        )

    def record_run_by_name(self, name: str, status: str, error: Optional[str] = None) -> None:
        """Used when the failure happened before the report id was known."""
        self.db.execute(
            """
            UPDATE scheduled_reports
            SET last_run_at = NOW(),
                last_run_status = :status,
                last_run_error = :error
            WHERE name = :name
            """,
            {"name": name, "status": status, "error": error},
            error_message="Failed to record report run",
        )

    # ========================================================================
    # ASSOCIATIONS
    # ========================================================================

    def list_report_recipients(self, report_id: Any, active_only: bool = False) -> List[Dict[str, Any]]:
        if not report_id:
            raise ValidationError("scheduled_report_id is required")

        active_filter = "AND rr.is_active = true" if active_only else ""
        return self.db.fetch_all(
            f"""
            SELECT rr.id, rr.email, rr.name, rr.is_active
            FROM scheduled_report_recipients srr
            JOIN report_recipients rr ON srr.recipient_id = rr.id
            WHERE srr.scheduled_report_id = :report_id
              {active_filter}
            ORDER BY rr.email
            """,
            {"report_id": report_id},
            error_message="Failed to fetch recipients",
        )

    def add_report_recipient(self, report_id: Any, recipient_id: Any) -> None:
        """Idempotent: an existing association is left alone."""
        if not report_id or not recipient_id:
            raise ValidationError("scheduled_report_id and recipient_id are required")

        self.db.execute(
            """
            INSERT INTO scheduled_report_recipients (scheduled_report_id, recipient_id)
            VALUES (:report_id, :recipient_id)
            ON CONFLICT (scheduled_report_id, recipient_id) DO NOTHING
            """,
            {"report_id": report_id, "recipient_id": recipient_id},
            error_message="Failed to add recipient to scheduled report",
        )

    def remove_report_recipient(self, report_id: Any, recipient_id: Any) -> None:
        if not report_id or not recipient_id:
            raise ValidationError("scheduled_report_id and recipient_id are required")

        rows = self.db.execute(
            """
            DELETE FROM scheduled_report_recipients
            WHERE scheduled_report_id = :report_id AND recipient_id = :recipient_id
            RETURNING id
            """,
            {"report_id": report_id, "recipient_id": recipient_id},
            error_message="Failed to remove recipient from scheduled report",
        )
        if not rows:
            raise NotFoundError("Association not found")

    def sync_all_recipients(self) -> int:
        """Attach every active recipient to every active report; returns rows added."""
        rows = self.db.execute(
            """
            INSERT INTO scheduled_report_recipients (scheduled_report_id, recipient_id)
            SELECT sr.id, rr.id
            FROM scheduled_reports sr
            CROSS JOIN report_recipients rr
            WHERE sr.is_active = true
              AND rr.is_active = true
              AND NOT EXISTS (
                SELECT 1
                FROM scheduled_report_recipients srr
                WHERE srr.scheduled_report_id = sr.id
                  AND srr.recipient_id = rr.id
              )
            RETURNING scheduled_report_id
            """,
            error_message="Failed to sync recipients",
        )
        logger.info(f"Synced recipients: {len(rows)} associations added")
        return len(rows)
