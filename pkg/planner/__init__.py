# Planner: clients, projects, tasks and the rest of a consultant's week
#
# Components:
#   scoring.py   - ICE score and task orderings
#   temporal.py  - Due-date classification (Overdue/Today/Tomorrow/Future)
#   schema.py    - Record dataclasses and enums
#   store.py     - SQLite persistence layer
#   events.py    - Change notifications for views
#   state.py     - AppState: in-memory lists, filters, UI flags, commands
#   reports.py   - Pipeline, time, RAID, client and project aggregates
#   dashboard.py - Render-ready dashboard and task rows
#   export.py    - JSON and CSV export
#   config.py    - YAML/env configuration
