"""
Data export: full JSON snapshot and a task CSV.
"""
import csv
import io
from datetime import datetime
from typing import Dict, Any

from .schema import COLLECTIONS
from .store import PlannerStore

EXPORT_VERSION = "1.0.0"

TASK_CSV_COLUMNS = [
    "id", "title", "status", "priority", "impact", "confidence", "effort",
    "score", "due", "client", "project", "tags",
]


def export_json(store: PlannerStore, now: datetime) -> Dict[str, Any]:
    """Snapshot of every collection plus persisted settings."""
    data: Dict[str, Any] = {
        "exportDate": now.isoformat(),
        "version": EXPORT_VERSION,
        "settings": store.get_settings(),
    }
    for name in COLLECTIONS:
        data[name] = [record.to_dict() for record in store.list(name)]
    return data


def export_tasks_csv(store: PlannerStore, tasks=None) -> str:
    """Tasks as CSV text, with client and project names resolved."""
    if tasks is None:
        tasks = store.list("tasks")
    clients = {c.id: c.name for c in store.list("clients")}
    projects = {p.id: p.title for p in store.list("projects")}

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=TASK_CSV_COLUMNS)
    writer.writeheader()
    for task in tasks:
        writer.writerow({
            "id": task.id,
            "title": task.title,
            "status": task.status.value,
            "priority": task.priority,
            "impact": task.impact,
            "confidence": task.confidence,
            "effort": task.effort,
            "score": f"{task.score:.2f}",
            "due": task.due.isoformat() if task.due else "",
            "client": clients.get(task.client_id, ""),
            "project": projects.get(task.project_id, ""),
            "tags": ";".join(task.tags),
        })
    return buf.getvalue()
