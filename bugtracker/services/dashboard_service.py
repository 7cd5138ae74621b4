"""
Dashboard Metrics Service — role-scoped bug aggregates.

Aggregates for the dashboard pages:
  - Totals and per-status counts
  - Status distribution chart (every status key present, plus "All")
  - Priority distribution chart (every priority key present)
  - Ten most recently created bugs (summary projection)

Scope: admin sees every bug, tester the bugs they reported, developer the
bugs assigned to them. Chart renderers index these dicts directly, so a
bucket with no bugs is reported as 0, never omitted.
"""

import logging

from sqlalchemy import func

from bugtracker.models.bug import BUG_PRIORITIES, BUG_STATUSES, Bug
from bugtracker.services import bug_service, workflow
from bugtracker.services.permission import ACTION_DASHBOARD_ADMIN, Principal, check_permission

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


def fill_buckets(raw: dict, keys) -> dict:
    """Return ``{key: raw.get(key, 0)}`` for every key, in order."""
    return {key: raw.get(key, 0) for key in keys}


def _grouped_counts(query, column) -> dict:
    rows = (
        query.with_entities(column, func.count(Bug.id))
        .order_by(None)
        .group_by(column)
        .all()
    )
    return {value: count for value, count in rows}


def get_status_distribution(by_code: dict, labels: dict) -> dict:
    """Counts keyed by compact status label ("InProgress"), plus "All"."""
    distribution = {
        workflow.compact_label(labels.get(code, code)): count
        for code, count in by_code.items()
    }
    distribution["All"] = sum(by_code.values())
    return distribution


def get_priority_distribution(query) -> dict:
    return fill_buckets(_grouped_counts(query, Bug.priority), BUG_PRIORITIES)


def get_recent_bugs(query, limit=RECENT_LIMIT) -> list[dict]:
    bugs = (
        query.order_by(Bug.created_at.desc(), Bug.id.desc())
        .limit(limit)
        .all()
    )
    return [b.to_summary() for b in bugs]


def _build(query) -> dict:
    labels = bug_service.get_status_labels()
    by_status = fill_buckets(_grouped_counts(query, Bug.status), BUG_STATUSES)
    total = sum(by_status.values())
    return {
        "statistics": {
            "total_bugs": total,
            "open_bugs": by_status["open"],
            "in_progress_bugs": by_status["in_progress"],
            "closed_bugs": by_status["closed"],
        },
        "charts": {
            "bug_distribution": get_status_distribution(by_status, labels),
            "bug_priority_levels": get_priority_distribution(query),
        },
        "recent_bugs": get_recent_bugs(query),
    }


def get_dashboard(principal: Principal) -> dict:
    """Dashboard over the bugs the principal can see."""
    data = _build(bug_service.scoped_query(principal))
    data["scope"] = principal.role
    return data


def get_admin_dashboard(principal: Principal) -> dict:
    """Platform-wide dashboard; administrators only."""
    check_permission(principal, None, ACTION_DASHBOARD_ADMIN, reason="Admin access required")
    data = _build(Bug.query)
    data["scope"] = "all"
    return data
