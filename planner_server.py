#!/usr/bin/env python3
"""
Planner Server
--------------
Local JSON API over the planner SQLite DB. A desktop or web shell renders
from these endpoints; every view-level computation (due classes, overdue
suppression, sort orders, reports) happens here so the UI stays dumb.

Usage:
    python planner_server.py --port 3000
    python planner_server.py --db ~/planner.db --config planner.yaml

API:
    GET  /health
    GET  /api/dashboard            ?now=ISO
    GET  /api/tasks                ?status=&client_id=&project_id=&tag=&sort=score|due|priority
    GET  /api/tasks/board          kanban columns
    POST /api/tasks/bulk           { ids: [...], updates: {...} }
    GET  /api/next-steps
    GET  /api/search               ?q=
    GET  /api/settings             PUT /api/settings { theme, accent_color, density, presenter_mode }
    GET  /api/export               GET /api/export/tasks.csv
    GET  /api/reports/pipeline     GET /api/reports/time?period=weekly&date=YYYY-MM-DD
    GET  /api/reports/raid       GET /api/reports/projects-by-month
    GET  /api/clients/<id>/metrics GET /api/projects/<id>/progress
    GET  /api/activity
    GET|POST       /api/<collection>
    GET|PUT|DELETE /api/<collection>/<id>

Write endpoints require X-API-Key when PLANNER_API_SECRET is set.
"""

import argparse
import hmac
import logging
import math
import os
import sys
from datetime import date, datetime, time
from functools import wraps

from flask import Flask, Response, jsonify, request, abort

from pkg.planner.config import Config
from pkg.planner.dashboard import build_dashboard, task_row, task_rows
from pkg.planner.export import export_json, export_tasks_csv
from pkg.planner.reports import (
    client_metrics,
    pipeline_metrics,
    project_progress,
    projects_by_month,
    raid_summary,
    time_summary,
)
from pkg.planner.schema import COLLECTIONS, Task
from pkg.planner.state import AppState
from pkg.planner.store import (
    PlannerStore,
    StoreError,
    RecordNotFound,
    UnknownCollection,
    IntegrityViolation,
)
from pkg.planner.temporal import local_now, parse_timestamp

app = Flask(__name__)
# columns, stages and hour rankings are ordered dicts
app.json.sort_keys = False

logger = logging.getLogger("planner")

# Field that must be present when creating a record of each collection
REQUIRED_FIELDS = {
    "clients": "name",
    "projects": "title",
    "tasks": "title",
    "notes": "title",
    "opportunities": "name",
    "stakeholders": "name",
    "raid": "title",
    "time": "hours",
    "knowledge": "title",
}

# ── Auth ─────────────────────────────────────────────────────────────────────

API_SECRET = os.environ.get("PLANNER_API_SECRET", "")


def require_api_key(f):
    """Decorator: when a secret is configured, reject writes without a valid X-API-Key."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if API_SECRET:
            provided = request.headers.get("X-API-Key", "").strip()
            if not hmac.compare_digest(provided, API_SECRET):
                code = 401 if not provided else 403
                return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── Config ───────────────────────────────────────────────────────────────────

def get_config() -> Config:
    return Config.load()


def get_store() -> PlannerStore:
    return PlannerStore(get_config().db_path)


def get_state() -> AppState:
    cfg = get_config()
    return AppState(PlannerStore(cfg.db_path), clock=lambda: local_now(cfg.timezone)).load_data()


def request_now() -> datetime:
    """`?now=` override for deterministic views, else the configured wall clock."""
    raw = request.args.get("now", "").strip()
    if not raw:
        return local_now(get_config().timezone)
    try:
        value = parse_timestamp(raw)
    except ValueError:
        abort(400, f"Invalid now: {raw}")
    if not isinstance(value, datetime):
        value = datetime.combine(value, time())
    return value


def request_json() -> dict:
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        abort(400, "JSON object body required")
    return data


def record_json(record, now: datetime) -> dict:
    if isinstance(record, Task):
        return task_row(record, now)
    return record.to_dict()


# ── Errors ───────────────────────────────────────────────────────────────────

@app.errorhandler(400)
def bad_request(e):
    return jsonify({"error": getattr(e, "description", str(e))}), 400


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": getattr(e, "description", str(e))}), 404


@app.errorhandler(RecordNotFound)
@app.errorhandler(UnknownCollection)
def record_not_found(e):
    return jsonify({"error": str(e)}), 404


@app.errorhandler(IntegrityViolation)
@app.errorhandler(ValueError)
def invalid_input(e):
    return jsonify({"error": str(e)}), 400


@app.errorhandler(StoreError)
def store_error(e):
    app.logger.error(f"Storage error: {e}")
    return jsonify({"error": str(e)}), 500


# ── Routes ───────────────────────────────────────────────────────────────────

@app.route("/health")
def health():
    store = get_store()
    return jsonify({"status": "ok", "db": store.db_path, "stats": store.stats()})


@app.route("/api/dashboard")
def api_dashboard():
    now = request_now()
    state = get_state()
    return jsonify(build_dashboard(state, now, upcoming_limit=get_config().upcoming_limit))


@app.route("/api/tasks", methods=["GET"])
def api_tasks():
    now = request_now()
    state = get_state()
    state.set_task_filter(
        status=request.args.get("status"),
        client_id=request.args.get("client_id"),
        project_id=request.args.get("project_id"),
        tag=request.args.get("tag"),
    )
    tasks = state.sorted_tasks(request.args.get("sort", "score"))
    return jsonify({"tasks": task_rows(tasks, now), "count": len(tasks)})


@app.route("/api/tasks", methods=["POST"])
@require_api_key
def api_create_task():
    return api_create("tasks")


@app.route("/api/tasks/board")
def api_task_board():
    now = request_now()
    state = get_state()
    columns = state.tasks_by_status(request.args.get("sort", "score"))
    return jsonify({
        "columns": {status: task_rows(tasks, now) for status, tasks in columns.items()},
        "counts": {status: len(tasks) for status, tasks in columns.items()},
    })


@app.route("/api/tasks/bulk", methods=["POST"])
@require_api_key
def api_bulk_update_tasks():
    data = request_json()
    ids = data.get("ids") or []
    updates = data.get("updates") or {}
    if not isinstance(ids, list) or not ids:
        return jsonify({"error": "ids must be a non-empty list"}), 400
    if not isinstance(updates, dict) or not updates:
        return jsonify({"error": "updates must be a non-empty object"}), 400
    now = request_now()
    tasks = get_state().bulk_update_tasks(ids, updates)
    return jsonify({"tasks": task_rows(tasks, now), "count": len(tasks)})


@app.route("/api/next-steps")
def api_next_steps():
    now = request_now()
    return jsonify({"next_steps": get_state().next_steps(now)})


@app.route("/api/search")
def api_search():
    query = request.args.get("q", "").strip()
    if not query:
        return jsonify({"query": "", "results": []})
    results = get_state().search(query)
    return jsonify({"query": query, "results": results})


@app.route("/api/settings", methods=["GET"])
def api_settings_get():
    return jsonify(get_state().settings)


@app.route("/api/settings", methods=["PUT"])
@require_api_key
def api_settings_set():
    data = request_json()
    state = get_state()
    if "theme" in data:
        state.set_theme(data["theme"])
    if "accent_color" in data:
        state.set_accent_color(data["accent_color"])
    if "density" in data:
        state.set_density(data["density"])
    if "presenter_mode" in data and bool(data["presenter_mode"]) != state.settings["presenter_mode"]:
        state.toggle_presenter_mode()
    return jsonify(state.settings)


@app.route("/api/export")
def api_export():
    return jsonify(export_json(get_store(), request_now()))


@app.route("/api/export/tasks.csv")
def api_export_tasks_csv():
    filename = f"planner_tasks_{request_now().strftime('%Y-%m-%d')}.csv"
    return Response(
        export_tasks_csv(get_store()),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.route("/api/reports/pipeline")
def api_report_pipeline():
    return jsonify(pipeline_metrics(get_state().opportunities))


@app.route("/api/reports/time")
def api_report_time():
    cfg = get_config()
    period = request.args.get("period", "weekly")
    raw_date = request.args.get("date", "").strip()
    try:
        anchor = date.fromisoformat(raw_date) if raw_date else request_now().date()
    except ValueError:
        return jsonify({"error": f"Invalid date: {raw_date}"}), 400
    state = get_state()
    return jsonify(time_summary(
        state.time_entries, period, anchor,
        clients=state.clients, projects=state.projects, week_start=cfg.week_start,
    ))


@app.route("/api/reports/raid")
def api_report_raid():
    return jsonify(raid_summary(get_state().raid_items))


@app.route("/api/reports/projects-by-month")
def api_report_projects_by_month():
    now = request_now()
    groups = projects_by_month(get_state().projects, now)
    return jsonify({month: [p.to_dict() for p in projects] for month, projects in groups.items()})


@app.route("/api/clients/<client_id>/metrics")
def api_client_metrics(client_id):
    state = get_state()
    if state.find("clients", client_id) is None:
        return jsonify({"error": "Client not found"}), 404
    return jsonify(client_metrics(
        client_id, state.projects, state.tasks, state.opportunities, state.stakeholders,
    ))


@app.route("/api/projects/<project_id>/progress")
def api_project_progress(project_id):
    state = get_state()
    if state.find("projects", project_id) is None:
        return jsonify({"error": "Project not found"}), 404
    return jsonify(project_progress(project_id, state.tasks))


@app.route("/api/activity")
def api_activity():
    limit = request.args.get("limit", 50, type=int)
    return jsonify({"events": get_store().recent_activity(limit=limit, record_id=request.args.get("id"))})


# ── Generic collections ──────────────────────────────────────────────────────

def _check_collection(collection: str):
    if collection not in COLLECTIONS:
        abort(404, f"Unknown collection: {collection}")


@app.route("/api/<collection>", methods=["GET"])
def api_list(collection):
    _check_collection(collection)
    now = request_now()
    filters = {
        k: v for k, v in request.args.items()
        if k in COLLECTIONS[collection].field_names() and k != "id"
    }
    records = get_store().list(collection, tag=request.args.get("tag"), **filters)
    return jsonify({collection: [record_json(r, now) for r in records], "count": len(records)})


@app.route("/api/<collection>", methods=["POST"])
@require_api_key
def api_create(collection):
    _check_collection(collection)
    data = request_json()
    required = REQUIRED_FIELDS[collection]
    value = data.get(required)
    if value is None or (isinstance(value, str) and not value.strip()):
        return jsonify({"error": f"{required} is required"}), 400
    if collection == "time":
        try:
            hours = float(value)
            if not math.isfinite(hours) or hours <= 0:
                return jsonify({"error": "hours must be positive"}), 400
        except (TypeError, ValueError):
            return jsonify({"error": "hours must be a number"}), 400
    now = request_now()
    record = get_state().create(collection, data)
    return jsonify({"record": record_json(record, now), "id": record.id}), 201


@app.route("/api/<collection>/<record_id>", methods=["GET"])
def api_get(collection, record_id):
    _check_collection(collection)
    record = get_store().get(collection, record_id)
    if record is None:
        return jsonify({"error": f"{collection}/{record_id} not found"}), 404
    return jsonify({"record": record_json(record, request_now())})


@app.route("/api/<collection>/<record_id>", methods=["PUT"])
@require_api_key
def api_update(collection, record_id):
    _check_collection(collection)
    data = request_json()
    now = request_now()
    record = get_state().update(collection, record_id, data)
    return jsonify({"record": record_json(record, now)})


@app.route("/api/<collection>/<record_id>", methods=["DELETE"])
@require_api_key
def api_delete(collection, record_id):
    _check_collection(collection)
    get_state().delete(collection, record_id)
    return jsonify({"deleted": record_id})


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="Planner Server")
    parser.add_argument("--host", help="Bind address (default from config: 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Port (default from config: 3000)")
    parser.add_argument("--db", help="Path to planner.db (overrides PLANNER_DB env var)")
    parser.add_argument("--config", help="Path to planner.yaml (overrides PLANNER_CONFIG env var)")
    args = parser.parse_args(argv)

    if args.db:
        os.environ["PLANNER_DB"] = args.db
    if args.config:
        os.environ["PLANNER_CONFIG"] = args.config

    cfg = get_config()
    logging.basicConfig(
        level=getattr(logging, str(cfg.log_level).upper(), logging.INFO),
        format="%(asctime)s [planner] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    host = args.host or cfg.host
    port = args.port or cfg.port
    store = PlannerStore(cfg.db_path)
    store.rescore_all()

    logger.info(f"Planner API on http://{host}:{port} (db: {cfg.db_path})")
    if not API_SECRET:
        logger.warning("PLANNER_API_SECRET not set; write endpoints are open to local callers")

    app.run(host=host, port=port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
