"""
Aggregate figures for the pipeline, time-tracking, RAID, client and project
views.

Pure functions over lists of records; nothing here touches the store.
"""
from collections import OrderedDict
from datetime import date, timedelta
from typing import Dict, Any, List, Iterable

from .schema import (
    Level,
    OpportunityStage,
    ProjectKind,
    TaskStatus,
)
from .temporal import local_day

PERIODS = ("daily", "weekly", "monthly")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Pipeline
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def pipeline_metrics(opportunities: Iterable) -> Dict[str, Any]:
    """Open pipeline, probability-weighted pipeline, closed-won total and win rate."""
    opportunities = list(opportunities)
    open_opps = [o for o in opportunities if not o.stage.is_closed]
    won = [o for o in opportunities if o.stage == OpportunityStage.CLOSED_WON]
    closed = [o for o in opportunities if o.stage.is_closed]

    by_stage = OrderedDict((stage.value, {"count": 0, "amount": 0.0}) for stage in OpportunityStage)
    for opp in opportunities:
        bucket = by_stage[opp.stage.value]
        bucket["count"] += 1
        bucket["amount"] += opp.amount

    return {
        "total_pipeline": sum(o.amount for o in open_opps),
        "weighted_pipeline": sum(o.weighted_amount for o in open_opps),
        "closed_won": sum(o.amount for o in won),
        "win_rate": (len(won) / len(closed) * 100.0) if closed else 0.0,
        "open_count": len(open_opps),
        "by_stage": dict(by_stage),
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Time tracking
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def period_range(period: str, anchor: date, week_start: int = 0) -> tuple:
    """
    Inclusive (start, end) dates of the period containing `anchor`.

    week_start: 0 = Monday … 6 = Sunday.
    """
    if period == "daily":
        return anchor, anchor
    if period == "weekly":
        start = anchor - timedelta(days=(anchor.weekday() - week_start) % 7)
        return start, start + timedelta(days=6)
    if period == "monthly":
        start = anchor.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month - timedelta(days=1)
    raise ValueError(f"Unknown period: {period}. Available: {list(PERIODS)}")


def time_summary(
    entries: Iterable,
    period: str,
    anchor: date,
    clients: Iterable = (),
    projects: Iterable = (),
    week_start: int = 0,
) -> Dict[str, Any]:
    """Totals, billable split, utilization and groupings for one period."""
    start, end = period_range(period, anchor, week_start)
    in_period = [e for e in entries if e.date and start <= _as_date(e.date) <= end]

    total = sum(e.hours for e in in_period)
    billable = sum(e.hours for e in in_period if e.billable)

    client_names = {c.id: c.name for c in clients}
    project_titles = {p.id: p.title for p in projects}

    by_date: Dict[str, float] = {}
    by_client: Dict[str, float] = {}
    by_project: Dict[str, float] = {}
    for e in in_period:
        key = _as_date(e.date).isoformat()
        by_date[key] = by_date.get(key, 0.0) + e.hours
        if e.client_id:
            name = client_names.get(e.client_id, "Unknown")
            by_client[name] = by_client.get(name, 0.0) + e.hours
        if e.project_id:
            title = project_titles.get(e.project_id, "Unknown")
            by_project[title] = by_project.get(title, 0.0) + e.hours

    return {
        "period": period,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "total_hours": total,
        "billable_hours": billable,
        "non_billable_hours": total - billable,
        "utilization": (billable / total * 100.0) if total > 0 else 0.0,
        "entries": len(in_period),
        "by_date": dict(sorted(by_date.items())),
        "by_client": dict(sorted(by_client.items(), key=lambda kv: -kv[1])),
        "by_project": dict(sorted(by_project.items(), key=lambda kv: -kv[1])),
    }


def _as_date(value) -> date:
    # time entries may carry a datetime when created from a timer
    return value.date() if hasattr(value, "date") and callable(value.date) else value


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RAID
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def risk_score(severity, likelihood) -> int:
    """severity × likelihood on a 1..3 scale each, so 1..9."""
    return Level.from_str(severity).rank * Level.from_str(likelihood).rank


def risk_band(score: int) -> str:
    if score >= 6:
        return "high"
    if score >= 3:
        return "medium"
    return "low"


def raid_summary(items: Iterable) -> Dict[str, Any]:
    """Counts per kind and status, plus open risks ranked by score."""
    items = list(items)
    by_kind: Dict[str, int] = {}
    open_by_kind: Dict[str, int] = {}
    for item in items:
        by_kind[item.kind.value] = by_kind.get(item.kind.value, 0) + 1
        if item.status.value != "Closed":
            open_by_kind[item.kind.value] = open_by_kind.get(item.kind.value, 0) + 1
    risks = [
        {
            "id": i.id,
            "title": i.title,
            "score": risk_score(i.severity, i.likelihood),
            "band": risk_band(risk_score(i.severity, i.likelihood)),
        }
        for i in items
        if i.kind.value == "Risk" and i.status.value != "Closed"
    ]
    risks.sort(key=lambda r: -r["score"])
    return {"by_kind": by_kind, "open_by_kind": open_by_kind, "open_risks": risks}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Clients & projects
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def client_metrics(client_id: str, projects, tasks, opportunities, stakeholders) -> Dict[str, Any]:
    client_projects = [p for p in projects if p.client_id == client_id]
    client_tasks = [t for t in tasks if t.client_id == client_id]
    client_opps = [o for o in opportunities if o.client_id == client_id]
    client_people = [s for s in stakeholders if s.client_id == client_id]
    key = next((s for s in client_people if s.influence == 5), None)
    return {
        "projects": len(client_projects),
        "active_projects": sum(1 for p in client_projects if p.kind == ProjectKind.ACTIVE),
        "tasks": len(client_tasks),
        "open_tasks": sum(1 for t in client_tasks if t.status != TaskStatus.DONE),
        "opportunities": len(client_opps),
        "pipeline_value": sum(o.weighted_amount for o in client_opps),
        "stakeholders": len(client_people),
        "key_stakeholder": key.name if key else None,
    }


def project_progress(project_id: str, tasks) -> Dict[str, Any]:
    project_tasks = [t for t in tasks if t.project_id == project_id]
    done = sum(1 for t in project_tasks if t.status == TaskStatus.DONE)
    blocked = sum(1 for t in project_tasks if t.status == TaskStatus.BLOCKED)
    total = len(project_tasks)
    return {
        "total": total,
        "done": done,
        "blocked": blocked,
        "percent_complete": round(done / total * 100.0, 1) if total else 0.0,
    }


def projects_by_month(projects, now=None) -> Dict[str, List]:
    """Group projects by the YYYY-MM of their next-step due date; undated under 'No Date'."""
    groups: Dict[str, List] = {}
    for project in projects:
        if project.next_step_due:
            day = local_day(project.next_step_due, now) if now else _as_date(project.next_step_due)
            key = day.strftime("%Y-%m")
        else:
            key = "No Date"
        groups.setdefault(key, []).append(project)
    dated = sorted(k for k in groups if k != "No Date")
    ordered = {k: groups[k] for k in dated}
    if "No Date" in groups:
        ordered["No Date"] = groups["No Date"]
    return ordered
