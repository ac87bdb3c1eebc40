"""
Tests for AppState: command handlers, filters, views, settings and timer.
"""
from datetime import date, datetime, timedelta

import pytest

from pkg.planner.events import DATA_CHANGED
from pkg.planner.schema import TaskStatus
from pkg.planner.state import AppState

from conftest import NOW


def _seed_tasks(state):
    """One task per urgency bucket relative to NOW (2024-01-02 10:00)."""
    return {
        "overdue": state.create_task({"title": "overdue", "status": "Todo", "due": NOW - timedelta(days=1)}),
        "done_late": state.create_task({"title": "done late", "status": "Done", "due": NOW - timedelta(days=3)}),
        "blocked_late": state.create_task({"title": "blocked late", "status": "Blocked", "due": NOW - timedelta(days=2)}),
        "today_low": state.create_task({"title": "today low", "status": "Todo", "due": NOW, "priority": 1}),
        "today_high": state.create_task({"title": "today high", "status": "Doing", "due": NOW.replace(hour=23), "priority": 5}),
        "tomorrow": state.create_task({"title": "tomorrow", "status": "Todo", "due": NOW + timedelta(days=1)}),
        "later": state.create_task({"title": "later", "status": "Todo", "due": NOW + timedelta(days=10)}),
        "undated": state.create_task({"title": "undated", "status": "Inbox"}),
    }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Commands
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_refreshes_list_and_emits(state):
    seen = []
    state.events.subscribe("tasks_changed", lambda **kw: seen.append(kw))
    task = state.create_task({"title": "x"})
    assert state.tasks == [task]
    assert seen == [{"action": "created", "record_id": task.id}]


def test_update_and_delete(state):
    task = state.create_task({"title": "x"})
    changes = []
    state.events.subscribe(DATA_CHANGED, lambda **kw: changes.append(kw["action"]))
    updated = state.update_task(task.id, {"priority": 5})
    assert state.tasks[0].priority == 5
    assert state.tasks[0].score == updated.score
    state.delete_task(task.id)
    assert state.tasks == []
    assert changes == ["updated", "deleted"]


def test_delete_client_reloads_dependents(state):
    client = state.create("clients", {"name": "Acme"})
    state.create_task({"title": "x", "client_id": client.id})
    state.delete("clients", client.id)
    assert state.clients == []
    assert state.tasks[0].client_id is None


def test_bulk_update(state):
    a = state.create_task({"title": "a"})
    b = state.create_task({"title": "b"})
    state.bulk_update_tasks([a.id, b.id], {"status": "Todo"})
    assert [t.status for t in state.tasks] == [TaskStatus.TODO, TaskStatus.TODO]


def test_no_global_state(store):
    """Two containers over the same store keep independent UI state"""
    one = AppState(store, clock=lambda: NOW).load_data()
    two = AppState(store, clock=lambda: NOW).load_data()
    one.set_view("tasks")
    one.set_task_filter(status="Todo")
    assert two.current_view == "dashboard"
    assert two.task_filter == {}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Navigation, filters, search
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_set_view(state):
    state.set_view("raid")
    assert state.current_view == "raid"
    with pytest.raises(ValueError):
        state.set_view("spreadsheet")


def test_task_filter(state):
    client = state.create("clients", {"name": "Acme"})
    state.create_task({"title": "a", "status": "Todo", "client_id": client.id, "tags": ["bug"]})
    state.create_task({"title": "b", "status": "Todo"})
    state.create_task({"title": "c", "status": "Done", "client_id": client.id})

    state.set_task_filter(status="Todo")
    assert [t.title for t in state.filtered_tasks()] == ["a", "b"]
    state.set_task_filter(client_id=client.id, status=None)
    assert [t.title for t in state.filtered_tasks()] == ["a", "c"]
    state.set_task_filter(tag="bug")
    assert [t.title for t in state.filtered_tasks()] == ["a"]
    with pytest.raises(ValueError):
        state.set_task_filter(colour="red")


def test_project_filter(state):
    state.create("projects", {"title": "Live", "kind": "Active"})
    state.create("projects", {"title": "Soon", "kind": "Planned"})
    state.set_project_filter(kind="planned")
    assert [p.title for p in state.filtered_projects()] == ["Soon"]


def test_sorted_tasks(state):
    state.create_task({"title": "low", "priority": 1})
    state.create_task({"title": "high", "priority": 5})
    assert [t.title for t in state.sorted_tasks()] == ["high", "low"]
    with pytest.raises(ValueError):
        state.sorted_tasks("alphabetical")


def test_tasks_by_status_has_every_column(state):
    state.create_task({"title": "a", "status": "Doing"})
    columns = state.tasks_by_status()
    assert list(columns) == ["Inbox", "Todo", "Doing", "Blocked", "Done"]
    assert [t.title for t in columns["Doing"]] == ["a"]
    assert columns["Done"] == []


def test_search(state):
    state.create("clients", {"name": "Acme"})
    results = state.search("acm")
    assert state.search_query == "acm"
    assert results == state.search_results
    assert results[0]["type"] == "clients"
    state.clear_search()
    assert state.search_results == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Settings & UI flags
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_settings_defaults(state):
    assert state.settings == {
        "theme": "dark",
        "accent_color": "#4DA3FF",
        "density": "comfortable",
        "presenter_mode": False,
    }


def test_settings_persist(state, store):
    state.set_theme("light")
    state.set_accent_color("#ff8800")
    state.set_density("compact")
    assert state.toggle_presenter_mode() is True

    reloaded = AppState(store, clock=lambda: NOW).load_data()
    assert reloaded.settings == {
        "theme": "light",
        "accent_color": "#FF8800",
        "density": "compact",
        "presenter_mode": True,
    }


@pytest.mark.parametrize("setter,value", [
    ("set_theme", "neon"),
    ("set_accent_color", "blue"),
    ("set_accent_color", "#12345"),
    ("set_density", "tiny"),
])
def test_settings_validation(state, setter, value):
    with pytest.raises(ValueError):
        getattr(state, setter)(value)


def test_drawer(state):
    state.open_drawer({"id": "tsk-1"}, "task")
    assert state.drawer_open
    assert state.drawer_content == {"content": {"id": "tsk-1"}, "type": "task"}
    state.close_drawer()
    assert not state.drawer_open
    assert state.drawer_content is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Timer
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTimer:

    def _state(self, store):
        clock = {"now": NOW}
        state = AppState(store, clock=lambda: clock["now"]).load_data()
        return state, clock

    def test_stop_records_time_entry(self, store):
        state, clock = self._state(store)
        client = state.create("clients", {"name": "Acme"})
        task = state.create_task({"title": "Workshop", "client_id": client.id})
        state.start_timer(task.id)
        clock["now"] = NOW + timedelta(minutes=90)
        assert state.tick() == 5400.0
        entry = state.stop_timer()
        assert entry.hours == 1.5
        assert entry.task_id == task.id
        assert entry.client_id == client.id
        assert entry.notes == "Workshop"
        assert entry.date == date(2024, 1, 2)
        assert state.active_timer is None
        assert state.time_entries == [entry]

    def test_stop_without_timer(self, store):
        state, _ = self._state(store)
        assert state.stop_timer() is None

    def test_too_short_is_not_recorded(self, store):
        state, clock = self._state(store)
        state.start_timer()
        clock["now"] = NOW + timedelta(seconds=10)
        assert state.stop_timer() is None
        assert state.time_entries == []

    def test_start_while_running_records_previous(self, store):
        state, clock = self._state(store)
        state.start_timer()
        clock["now"] = NOW + timedelta(hours=1)
        state.start_timer()
        assert len(state.time_entries) == 1
        assert state.time_entries[0].hours == 1.0
        assert state.active_timer.started_at == NOW + timedelta(hours=1)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Dashboard queries
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_overdue_excludes_done_and_blocked(state):
    _seed_tasks(state)
    assert [t.title for t in state.overdue_tasks()] == ["overdue"]
    assert state.overdue_count() == 1


def test_load_data_keeps_every_task(store):
    for i in range(1001):
        store.create_task({"title": f"undated {i}"})
    store.create_task({"title": "late", "status": "Todo", "due": datetime(2023, 12, 1, 9, 0)})
    state = AppState(store, clock=lambda: NOW).load_data()
    assert len(state.tasks) == 1002
    assert [t.title for t in state.overdue_tasks()] == ["late"]


def test_today_tasks_by_score(state):
    _seed_tasks(state)
    assert [t.title for t in state.today_tasks()] == ["today high", "today low"]


def test_week_tasks_by_due(state):
    _seed_tasks(state)
    assert [t.title for t in state.week_tasks()] == ["today low", "today high", "tomorrow"]


def test_upcoming_excludes_overdue(state):
    tasks = _seed_tasks(state)
    titles = [t.title for t in state.upcoming_tasks(limit=10)]
    assert "overdue" not in titles
    assert "done late" not in titles
    assert "blocked late" not in titles
    assert titles[0] == "today high"
    assert set(titles) == {"today high", "today low", "tomorrow", "later", "undated"}
    assert len(state.upcoming_tasks(limit=2)) == 2
    assert tasks["undated"].score == tasks["later"].score
    # equal scores: dated before undated
    assert titles.index("later") < titles.index("undated")


def test_client_and_project_tasks(state):
    client = state.create("clients", {"name": "Acme"})
    project = state.create("projects", {"title": "ERP", "client_id": client.id})
    state.create_task({"title": "a", "client_id": client.id})
    state.create_task({"title": "b", "project_id": project.id})
    assert [t.title for t in state.client_tasks(client.id)] == ["a"]
    assert [t.title for t in state.project_tasks(project.id)] == ["b"]


def test_next_steps(state):
    client = state.create("clients", {
        "name": "Acme", "next_step": "Send roadmap", "next_step_due": NOW + timedelta(days=3),
    })
    state.create("projects", {"title": "ERP", "next_step": "Map data", "next_step_due": NOW - timedelta(days=1)})
    state.create("opportunities", {"name": "Won deal", "stage": "Closed Won", "next_step": "Invoice"})
    state.create("opportunities", {"name": "Open deal", "next_step": "Call CFO"})
    state.create_task({"title": "Prep", "client_id": client.id, "is_next_step": True, "due": NOW})
    state.create_task({"title": "Finished", "is_next_step": True, "status": "Done"})

    steps = state.next_steps()
    assert [(s["kind"], s["next_step"]) for s in steps] == [
        ("project", "Map data"),
        ("task", "Prep"),
        ("client", "Send roadmap"),
        ("opportunity", "Call CFO"),
    ]
    assert steps[0]["due_class"] == "Overdue"
    assert steps[0]["overdue"] is True
    assert steps[1]["due_class"] == "Today"
    assert steps[3]["due_class"] == "NoDueDate"


def test_hours_today(state):
    state.create("time", {"hours": 2, "date": date(2024, 1, 2)})
    state.create("time", {"hours": 1.5, "date": date(2024, 1, 2)})
    state.create("time", {"hours": 4, "date": date(2024, 1, 1)})
    assert state.hours_today() == 3.5
    assert state.hours_on(date(2024, 1, 1)) == 4


def test_agenda(state):
    _seed_tasks(state)
    agenda = state.agenda(days=3)
    assert [b["date"] for b in agenda] == ["2024-01-02", "2024-01-03", "2024-01-04"]
    assert [t.title for t in agenda[0]["tasks"]] == ["today high", "today low"]
    assert [t.title for t in agenda[1]["tasks"]] == ["tomorrow"]
    assert agenda[2]["tasks"] == []
