"""
Application state container for the planner views.

AppState mirrors the store's tables in memory together with filters, search
results and UI flags. It is passed explicitly to whatever renders it (the
JSON API, a desktop shell, tests); there is no module-level singleton.

All mutations go through the command handlers below. Each one writes to the
store first, refreshes the affected lists and then publishes a change event.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any, Callable, Iterable

from .events import PlannerEvents
from .schema import COLLECTIONS, Task, TaskStatus, OpportunityStage
from .scoring import sort_tasks, SORT_ORDERS
from .store import PlannerStore
from .temporal import (
    DueClass,
    classify_due_date,
    counts_as_overdue,
    is_actionable,
    local_day,
    local_now,
    within_days,
)

logger = logging.getLogger(__name__)

VIEWS = (
    "dashboard", "tasks", "projects", "clients", "notes",
    "opportunities", "raid", "knowledge", "time", "settings",
)
THEMES = ("dark", "light")
DENSITIES = ("comfortable", "compact")

DEFAULT_SETTINGS = {
    "theme": "dark",
    "accent_color": "#4DA3FF",
    "density": "comfortable",
    "presenter_mode": False,
}

TASK_FILTER_KEYS = ("status", "client_id", "project_id", "tag")
PROJECT_FILTER_KEYS = ("kind", "client_id")

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


@dataclass
class ActiveTimer:
    """A running stopwatch, optionally attached to a task."""
    started_at: datetime
    task_id: Optional[str] = None
    elapsed: float = 0.0  # seconds, refreshed by tick()


class AppState:
    """Explicit state for the views, mutated only through command handlers."""

    def __init__(
        self,
        store: PlannerStore,
        clock: Optional[Callable[[], datetime]] = None,
        events: Optional[PlannerEvents] = None,
    ):
        self.store = store
        self.clock = clock or local_now
        self.events = events or PlannerEvents()

        self.current_view = "dashboard"
        self.collections: Dict[str, list] = {name: [] for name in COLLECTIONS}

        self.task_filter: Dict[str, Any] = {}
        self.project_filter: Dict[str, Any] = {}

        self.search_query = ""
        self.search_results: List[Dict[str, Any]] = []

        self.settings: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        self.drawer_open = False
        self.drawer_content: Optional[Dict[str, Any]] = None

        self.active_timer: Optional[ActiveTimer] = None

    # ──────────────────────────────────────────
    # Lists
    # ──────────────────────────────────────────

    @property
    def clients(self) -> list:
        return self.collections["clients"]

    @property
    def projects(self) -> list:
        return self.collections["projects"]

    @property
    def tasks(self) -> List[Task]:
        return self.collections["tasks"]

    @property
    def notes(self) -> list:
        return self.collections["notes"]

    @property
    def opportunities(self) -> list:
        return self.collections["opportunities"]

    @property
    def stakeholders(self) -> list:
        return self.collections["stakeholders"]

    @property
    def raid_items(self) -> list:
        return self.collections["raid"]

    @property
    def time_entries(self) -> list:
        return self.collections["time"]

    @property
    def knowledge_items(self) -> list:
        return self.collections["knowledge"]

    def find(self, collection: str, record_id: Optional[str]):
        if not record_id:
            return None
        for record in self.collections[collection]:
            if record.id == record_id:
                return record
        return None

    # ──────────────────────────────────────────
    # Loading
    # ──────────────────────────────────────────

    def load_data(self) -> "AppState":
        """Reload every list and the persisted UI settings from the store."""
        for name in COLLECTIONS:
            self.collections[name] = self.store.list(name)
        stored = self.store.get_settings()
        self.settings = {key: stored.get(key, default) for key, default in DEFAULT_SETTINGS.items()}
        return self

    def _reload(self, collection: str) -> None:
        self.collections[collection] = self.store.list(collection)

    # ──────────────────────────────────────────
    # CRUD commands
    # ──────────────────────────────────────────

    def create(self, collection: str, data: Dict[str, Any]):
        record = self.store.create(collection, data)
        self._reload(collection)
        self.events.collection_changed(collection, "created", record.id)
        return record

    def update(self, collection: str, record_id: str, updates: Dict[str, Any]):
        record = self.store.update(collection, record_id, updates)
        self._reload(collection)
        self.events.collection_changed(collection, "updated", record.id)
        return record

    def delete(self, collection: str, record_id: str) -> None:
        self.store.delete(collection, record_id)
        # deletes may clear links in other tables
        self.load_data()
        self.events.collection_changed(collection, "deleted", record_id)

    def create_task(self, data: Dict[str, Any]) -> Task:
        return self.create("tasks", data)

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        return self.update("tasks", task_id, updates)

    def delete_task(self, task_id: str) -> None:
        self.delete("tasks", task_id)

    def bulk_update_tasks(self, task_ids: Iterable[str], updates: Dict[str, Any]) -> List[Task]:
        tasks = self.store.bulk_update_tasks(list(task_ids), updates)
        self._reload("tasks")
        for task in tasks:
            self.events.collection_changed("tasks", "updated", task.id)
        return tasks

    # ──────────────────────────────────────────
    # Navigation, filters, search
    # ──────────────────────────────────────────

    def set_view(self, view: str) -> None:
        if view not in VIEWS:
            raise ValueError(f"Unknown view: {view}. Available: {list(VIEWS)}")
        self.current_view = view
        self.events.emit("view_changed", view=view)

    def set_task_filter(self, **task_filter) -> None:
        unknown = set(task_filter) - set(TASK_FILTER_KEYS)
        if unknown:
            raise ValueError(f"Unknown task filter keys: {sorted(unknown)}")
        self.task_filter = {k: v for k, v in task_filter.items() if v not in (None, "")}
        self.events.emit("filter_changed", target="tasks", filter=dict(self.task_filter))

    def set_project_filter(self, **project_filter) -> None:
        unknown = set(project_filter) - set(PROJECT_FILTER_KEYS)
        if unknown:
            raise ValueError(f"Unknown project filter keys: {sorted(unknown)}")
        self.project_filter = {k: v for k, v in project_filter.items() if v not in (None, "")}
        self.events.emit("filter_changed", target="projects", filter=dict(self.project_filter))

    def filtered_tasks(self) -> List[Task]:
        """Tasks matching task_filter, in creation order."""
        f = self.task_filter
        status = TaskStatus.from_str(f["status"]) if f.get("status") else None
        result = []
        for task in self.tasks:
            if status and task.status != status:
                continue
            if f.get("client_id") and task.client_id != f["client_id"]:
                continue
            if f.get("project_id") and task.project_id != f["project_id"]:
                continue
            if f.get("tag") and f["tag"] not in task.tags:
                continue
            result.append(task)
        return result

    def filtered_projects(self) -> list:
        f = self.project_filter
        result = []
        for project in self.projects:
            if f.get("kind") and project.kind.value != str(f["kind"]).title():
                continue
            if f.get("client_id") and project.client_id != f["client_id"]:
                continue
            result.append(project)
        return result

    def sorted_tasks(self, sort_by: str = "score") -> List[Task]:
        if sort_by not in SORT_ORDERS:
            raise ValueError(f"Unknown sort order: {sort_by}. Available: {list(SORT_ORDERS)}")
        return sort_tasks(self.filtered_tasks(), sort_by)

    def tasks_by_status(self, sort_by: str = "score") -> Dict[str, List[Task]]:
        """Kanban columns, one per status, each sorted by `sort_by`."""
        columns = {status.value: [] for status in TaskStatus}
        for task in self.sorted_tasks(sort_by):
            columns[task.status.value].append(task)
        return columns

    def search(self, query: str) -> List[Dict[str, Any]]:
        self.search_query = query
        self.search_results = self.store.search(query)
        self.events.emit("search_changed", query=query, count=len(self.search_results))
        return self.search_results

    def clear_search(self) -> None:
        self.search_query = ""
        self.search_results = []
        self.events.emit("search_changed", query="", count=0)

    # ──────────────────────────────────────────
    # Settings and UI flags
    # ──────────────────────────────────────────

    def _set_setting(self, key: str, value: Any) -> None:
        self.store.set_setting(key, value)
        self.settings[key] = value
        self.events.emit("settings_changed", key=key, value=value)

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme: {theme}")
        self._set_setting("theme", theme)

    def set_accent_color(self, color: str) -> None:
        if not _HEX_COLOR.match(color or ""):
            raise ValueError(f"Accent color must be #RRGGBB, got {color!r}")
        self._set_setting("accent_color", color.upper())

    def set_density(self, density: str) -> None:
        if density not in DENSITIES:
            raise ValueError(f"Unknown density: {density}")
        self._set_setting("density", density)

    def toggle_presenter_mode(self) -> bool:
        enabled = not self.settings.get("presenter_mode", False)
        self._set_setting("presenter_mode", enabled)
        return enabled

    def open_drawer(self, content: Any, content_type: str) -> None:
        self.drawer_open = True
        self.drawer_content = {"content": content, "type": content_type}
        self.events.emit("drawer_changed", open=True, type=content_type)

    def close_drawer(self) -> None:
        self.drawer_open = False
        self.drawer_content = None
        self.events.emit("drawer_changed", open=False, type=None)

    # ──────────────────────────────────────────
    # Timer
    # ──────────────────────────────────────────

    def start_timer(self, task_id: Optional[str] = None) -> ActiveTimer:
        """Start a stopwatch. A timer already running is stopped and recorded first."""
        if self.active_timer is not None:
            self.stop_timer()
        self.active_timer = ActiveTimer(started_at=self.clock(), task_id=task_id)
        self.events.emit("timer_started", task_id=task_id)
        return self.active_timer

    def tick(self) -> float:
        """Refresh the elapsed seconds of the running timer."""
        if self.active_timer is None:
            return 0.0
        elapsed = (self.clock() - self.active_timer.started_at).total_seconds()
        self.active_timer.elapsed = max(0.0, elapsed)
        return self.active_timer.elapsed

    def stop_timer(self):
        """
        Stop the running timer and log it as a TimeEntry.

        Returns the new entry, or None when no timer ran or it recorded
        less than 0.01h.
        """
        if self.active_timer is None:
            return None
        elapsed = self.tick()
        timer = self.active_timer
        self.active_timer = None
        hours = round(elapsed / 3600.0, 2)
        if hours <= 0:
            logger.info(f"Timer stopped after {elapsed:.0f}s; too short to record")
            self.events.emit("timer_stopped", entry_id=None)
            return None
        task = self.find("tasks", timer.task_id)
        entry = self.create("time", {
            "hours": hours,
            "date": local_day(timer.started_at, timer.started_at),
            "billable": True,
            "task_id": timer.task_id,
            "client_id": task.client_id if task else None,
            "project_id": task.project_id if task else None,
            "notes": task.title if task else "",
        })
        self.events.emit("timer_stopped", entry_id=entry.id)
        return entry

    # ──────────────────────────────────────────
    # Dashboard queries
    # ──────────────────────────────────────────

    def _now(self, now: Optional[datetime]) -> datetime:
        return now if now is not None else self.clock()

    def today_tasks(self, now: Optional[datetime] = None) -> List[Task]:
        now = self._now(now)
        due_today = [
            t for t in self.tasks
            if is_actionable(t.status) and classify_due_date(t.due, now) == DueClass.TODAY
        ]
        return sort_tasks(due_today, "score")

    def week_tasks(self, now: Optional[datetime] = None, days: int = 7) -> List[Task]:
        now = self._now(now)
        upcoming = [t for t in self.tasks if is_actionable(t.status) and within_days(t.due, now, days)]
        return sort_tasks(upcoming, "due")

    def overdue_tasks(self, now: Optional[datetime] = None) -> List[Task]:
        now = self._now(now)
        overdue = [t for t in self.tasks if counts_as_overdue(classify_due_date(t.due, now), t.status)]
        return sort_tasks(overdue, "due")

    def overdue_count(self, now: Optional[datetime] = None) -> int:
        return len(self.overdue_tasks(now))

    def upcoming_tasks(self, now: Optional[datetime] = None, limit: int = 5) -> List[Task]:
        """Highest-scoring outstanding work that is not already overdue."""
        now = self._now(now)
        upcoming = [
            t for t in self.tasks
            if is_actionable(t.status) and classify_due_date(t.due, now) != DueClass.OVERDUE
        ]
        return sort_tasks(upcoming, "score")[:limit]

    def client_tasks(self, client_id: str) -> List[Task]:
        return [t for t in self.tasks if t.client_id == client_id]

    def project_tasks(self, project_id: str) -> List[Task]:
        return [t for t in self.tasks if t.project_id == project_id]

    def next_steps(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Next-step tasks plus clients, projects and open opportunities with a
        next step, ordered by due date (undated last).
        """
        now = self._now(now)
        items = []
        for task in self.tasks:
            if task.is_next_step and task.status != TaskStatus.DONE:
                items.append(("task", task, task.title, task.due, task.status))
        for kind, records in (("client", self.clients), ("project", self.projects)):
            for record in records:
                if record.next_step:
                    items.append((kind, record, record.next_step, record.next_step_due, None))
        for opp in self.opportunities:
            if opp.next_step and not OpportunityStage.from_str(opp.stage).is_closed:
                items.append(("opportunity", opp, opp.next_step, opp.next_step_due, None))

        def due_key(item):
            due = item[3]
            if due is None:
                return (True, datetime.min.date())
            return (False, local_day(due, now))

        items.sort(key=due_key)
        steps = []
        for kind, record, text, due, status in items:
            due_class = classify_due_date(due, now)
            steps.append({
                "kind": kind,
                "id": record.id,
                "title": record.label,
                "next_step": text,
                "due": due.isoformat() if due else None,
                "due_class": due_class.value,
                "overdue": counts_as_overdue(due_class, status),
            })
        return steps

    def hours_on(self, day, now: Optional[datetime] = None) -> float:
        """Hours tracked on a calendar day."""
        now = self._now(now)
        return sum(e.hours for e in self.time_entries if e.date and local_day(e.date, now) == day)

    def hours_today(self, now: Optional[datetime] = None) -> float:
        now = self._now(now)
        return self.hours_on(local_day(now, now), now)

    def agenda(self, now: Optional[datetime] = None, days: int = 7) -> List[Dict[str, Any]]:
        """One bucket per day for the next `days` days with the tasks due that day."""
        now = self._now(now)
        today = local_day(now, now)
        buckets = []
        for offset in range(days):
            day = today + timedelta(days=offset)
            due = [
                t for t in self.tasks
                if t.due is not None and is_actionable(t.status) and local_day(t.due, now) == day
            ]
            buckets.append({"date": day.isoformat(), "tasks": sort_tasks(due, "score")})
        return buckets
