"""
Hostel Ticketing Platform
Periodic jobs.

    escalation_scan   moves stalled tickets one rung up the escalation ladder
"""

from __future__ import annotations

import logging
from typing import Any

from hostel_tickets.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("escalation_scan", interval_setting="ESCALATION_SCAN_INTERVAL_MIN")
def scan_escalations(app) -> dict[str, Any]:
    """Escalate active tickets idle past their ladder threshold."""
    from hostel_tickets.services.escalation import overdue_escalations, run_escalation_cycle

    summary = run_escalation_cycle()
    overdue = overdue_escalations()
    if overdue:
        logger.warning("%d escalation(s) past their response window", len(overdue),
                       extra={"job_name": "escalation_scan"})

    return {
        "eligible": summary["eligible"],
        "escalated": summary["escalated"],
        "escalation_ids": [e["id"] for e in summary["escalations"]],
        "overdue_escalations": len(overdue),
    }
