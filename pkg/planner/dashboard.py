"""
Render-ready dashboard and task rows.

Rows carry two separate urgency facts: `due_class` is the raw calendar
classification of the due date, `overdue` is that classification after the
task status has been taken into account.
"""
from datetime import datetime
from typing import Dict, Any, List

from .reports import pipeline_metrics
from .schema import ProjectKind, Task
from .state import AppState
from .temporal import classify_due_date, counts_as_overdue

SIGNED_TAG = "Signed"


def task_row(task: Task, now: datetime) -> Dict[str, Any]:
    """Task dict plus its due class. Score is read as stored, never recomputed here."""
    due_class = classify_due_date(task.due, now)
    row = task.to_dict()
    row["due_class"] = due_class.value
    row["overdue"] = counts_as_overdue(due_class, task.status)
    return row


def task_rows(tasks, now: datetime) -> List[Dict[str, Any]]:
    return [task_row(t, now) for t in tasks]


def build_dashboard(state: AppState, now: datetime, upcoming_limit: int = 5) -> Dict[str, Any]:
    """Everything the home view shows, computed against one `now`."""
    overdue = state.overdue_tasks(now)
    pipeline = pipeline_metrics(state.opportunities)

    return {
        "now": now.isoformat(),
        "date_line": now.strftime("%A, %B %d, %Y").replace(" 0", " "),
        "hours_today": round(state.hours_today(now), 2),
        "counts": {
            "active_projects": sum(1 for p in state.projects if p.kind == ProjectKind.ACTIVE),
            "planned_projects": sum(1 for p in state.projects if p.kind == ProjectKind.PLANNED),
            "clients": len(state.clients),
            "signed_clients": sum(1 for c in state.clients if SIGNED_TAG in c.tags),
            "open_opportunities": pipeline["open_count"],
            "weighted_pipeline": pipeline["weighted_pipeline"],
            "open_tasks": sum(1 for t in state.tasks if t.status.value != "Done"),
            "overdue_tasks": len(overdue),
        },
        "overdue": task_rows(overdue[:3], now),
        "today": task_rows(state.today_tasks(now), now),
        "upcoming": task_rows(state.upcoming_tasks(now, limit=upcoming_limit), now),
        "next_steps": state.next_steps(now),
        "agenda": [
            {"date": bucket["date"], "tasks": task_rows(bucket["tasks"], now)}
            for bucket in state.agenda(now)
        ],
    }
