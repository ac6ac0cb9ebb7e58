"""
Hostel Ticketing Platform
Ticket notifications.

Assignment and escalation call ``notify`` inside their own unit of work;
rows are only added to the session here. The inbox helpers back the
notification endpoints and commit themselves.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from hostel_tickets.models import db
from hostel_tickets.models.notification import NOTIFICATION_KINDS, Notification

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    def notify(recipients, *, ticket, kind, title, body="", severity="info", escalation=None):
        """
        Queue one notification per distinct recipient about *ticket*.

        ``None`` entries are skipped so callers can pass optional parties
        (an unassigned ticket's assignee, an anonymous requester) directly.

        Returns:
            The Notification rows added to the session.
        """
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")

        rows = []
        for recipient_id in dict.fromkeys(r for r in recipients if r is not None):
            row = Notification(
                recipient_id=recipient_id,
                ticket_id=ticket.id,
                escalation_id=escalation.id if escalation is not None else None,
                kind=kind,
                severity=severity,
                title=title,
                body=body or "",
            )
            db.session.add(row)
            rows.append(row)

        if rows:
            logger.debug(
                "Queued %d %s notification(s)", len(rows), kind,
                extra={"ticket_id": ticket.id, "event_type": f"notify_{kind}"},
            )
        return rows

    @staticmethod
    def inbox(recipient_id, *, unread_only=False, limit=50, offset=0):
        """Newest-first page of a user's notifications as ``(items, total)``."""
        stmt = select(Notification).where(Notification.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))

        total = db.session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        items = db.session.scalars(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit).offset(offset)
        ).all()
        return items, total

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark one of *recipient_id*'s notifications read; None if it isn't theirs."""
        row = db.session.get(Notification, notification_id)
        if row is None or row.recipient_id != recipient_id:
            return None
        row.mark_read()
        db.session.commit()
        return row

    @staticmethod
    def mark_all_read(recipient_id):
        """Returns how many unread notifications were flipped."""
        result = db.session.execute(
            update(Notification)
            .where(Notification.recipient_id == recipient_id,
                   Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session="fetch")
        )
        db.session.commit()
        return result.rowcount
