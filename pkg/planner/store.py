"""
Planner storage backend (SQLite).

Provides CRUD for every record type, the task-specific write paths that keep
scores consistent, search, persisted settings and an activity log.
"""
import sqlite3
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable, Union

from .schema import (
    COLLECTIONS,
    SCORING_FIELDS,
    Task,
    TaskStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "planner" / "planner.db"


class StoreError(Exception):
    """Raised when a storage operation fails."""
    pass


class RecordNotFound(StoreError):
    """Raised when updating or deleting an id that does not exist."""
    pass


class UnknownCollection(StoreError):
    """Raised for a collection name with no table behind it."""
    pass


class IntegrityViolation(StoreError):
    """Raised when a write references a missing parent record."""
    pass


TABLES = {
    "clients": """
        CREATE TABLE IF NOT EXISTS clients (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            industry TEXT DEFAULT '',
            website TEXT DEFAULT '',
            email TEXT DEFAULT '',
            phone TEXT DEFAULT '',
            is_key_account INTEGER DEFAULT 0,
            tags TEXT DEFAULT '[]',       -- JSON set
            contacts TEXT DEFAULT '[]',   -- JSON list of objects
            links TEXT DEFAULT '[]',      -- JSON set
            next_step TEXT DEFAULT '',
            next_step_due TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "projects": """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT DEFAULT '',
            client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
            kind TEXT DEFAULT 'Active',
            type TEXT DEFAULT '',
            status TEXT DEFAULT '',
            due_date TEXT,
            tags TEXT DEFAULT '[]',
            next_step TEXT DEFAULT '',
            next_step_due TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT DEFAULT '',
            status TEXT DEFAULT 'Inbox',
            priority INTEGER DEFAULT 3,
            effort REAL DEFAULT 2.5,
            impact INTEGER DEFAULT 3,
            confidence REAL DEFAULT 0.7,
            score REAL NOT NULL,
            due TEXT,
            client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
            project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
            is_next_step INTEGER DEFAULT 0,
            tags TEXT DEFAULT '[]',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "notes": """
        CREATE TABLE IF NOT EXISTS notes (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            content TEXT DEFAULT '',
            client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
            project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
            linked_tasks TEXT DEFAULT '[]',
            tags TEXT DEFAULT '[]',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "opportunities": """
        CREATE TABLE IF NOT EXISTS opportunities (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
            stage TEXT DEFAULT 'Discovery',
            amount REAL DEFAULT 0,
            probability REAL DEFAULT 0.5,
            next_step TEXT DEFAULT '',
            next_step_due TEXT,
            notes TEXT DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "stakeholders": """
        CREATE TABLE IF NOT EXISTS stakeholders (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            role TEXT DEFAULT '',
            email TEXT DEFAULT '',
            phone TEXT DEFAULT '',
            client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
            influence INTEGER DEFAULT 3,
            attitude TEXT DEFAULT 'Neutral',
            notes TEXT DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "raid": """
        CREATE TABLE IF NOT EXISTS raid_items (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            kind TEXT DEFAULT 'Risk',
            description TEXT DEFAULT '',
            severity TEXT DEFAULT 'Medium',
            likelihood TEXT DEFAULT 'Medium',
            status TEXT DEFAULT 'Open',
            owner TEXT DEFAULT '',
            due TEXT,
            client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
            project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
            mitigation TEXT DEFAULT '',
            decided_on TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "time": """
        CREATE TABLE IF NOT EXISTS time_entries (
            id TEXT PRIMARY KEY,
            hours REAL NOT NULL,
            date TEXT NOT NULL,
            billable INTEGER DEFAULT 1,
            client_id TEXT REFERENCES clients(id) ON DELETE SET NULL,
            project_id TEXT REFERENCES projects(id) ON DELETE SET NULL,
            task_id TEXT REFERENCES tasks(id) ON DELETE SET NULL,
            notes TEXT DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "knowledge": """
        CREATE TABLE IF NOT EXISTS knowledge_items (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            url TEXT DEFAULT '',
            description TEXT DEFAULT '',
            tags TEXT DEFAULT '[]',
            source_type TEXT DEFAULT 'other',
            last_accessed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
}

# Columns matched by search(), per collection
SEARCH_COLUMNS = {
    "clients": ("name", "industry", "tags"),
    "projects": ("title", "description", "tags"),
    "tasks": ("title", "description", "tags"),
    "notes": ("title", "content", "tags"),
    "opportunities": ("name", "notes", "next_step"),
    "stakeholders": ("name", "role", "notes"),
    "raid": ("title", "description", "mitigation"),
    "knowledge": ("title", "description", "url", "tags"),
}

_SQL_TYPES = {int: "INTEGER", float: "REAL"}


@contextmanager
def _connect(db_path: str):
    """Open a connection with FK enforcement and WAL mode; commit or roll back."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        yield conn
        conn.commit()
    except sqlite3.IntegrityError as e:
        conn.rollback()
        raise IntegrityViolation(str(e)) from e
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"SQLite error on {db_path}: {e}")
        raise StoreError(str(e)) from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


class PlannerStore:
    """SQLite-backed store for planner records."""

    def __init__(self, db_path: Optional[str] = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(DEFAULT_DB_PATH)
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ──────────────────────────────────────────
    # Schema
    # ──────────────────────────────────────────

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            for ddl in TABLES.values():
                conn.execute(ddl)
            self._migrate_columns(conn)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS system_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    record_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    summary TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(due)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_client ON tasks(client_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_time_date ON time_entries(date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at)")

    def _migrate_columns(self, conn):
        """Add record fields missing from tables created by older versions."""
        for name, cls in COLLECTIONS.items():
            existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({cls._table})")}
            for field_name in cls.field_names():
                if field_name in existing:
                    continue
                col_type = _SQL_TYPES.get(cls._number_fields.get(field_name), "TEXT")
                if field_name in cls._bool_fields:
                    col_type = "INTEGER"
                logger.info(f"Adding column {cls._table}.{field_name}")
                conn.execute(f"ALTER TABLE {cls._table} ADD COLUMN {field_name} {col_type}")

    # ──────────────────────────────────────────
    # Row encoding
    # ──────────────────────────────────────────

    @staticmethod
    def _resolve(kind: Union[str, type]) -> type:
        if isinstance(kind, type) and kind in COLLECTIONS.values():
            return kind
        cls = COLLECTIONS.get(kind)
        if cls is None:
            raise UnknownCollection(f"Unknown collection: {kind}")
        return cls

    @staticmethod
    def _collection_name(cls: type) -> str:
        for name, klass in COLLECTIONS.items():
            if klass is cls:
                return name
        raise UnknownCollection(cls.__name__)

    @staticmethod
    def _encode(record) -> Dict[str, Any]:
        data = record.to_dict()
        for name in record._set_fields + record._json_fields:
            data[name] = json.dumps(data[name])
        for name in record._bool_fields:
            data[name] = 1 if data[name] else 0
        return data

    @staticmethod
    def _decode(cls: type, row: sqlite3.Row):
        data = dict(row)
        for name in cls._set_fields + cls._json_fields:
            raw = data.get(name)
            try:
                data[name] = json.loads(raw) if raw else []
            except (json.JSONDecodeError, TypeError):
                data[name] = []
        return cls.from_dict(data)

    def _insert(self, conn, record):
        data = self._encode(record)
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        conn.execute(
            f"INSERT INTO {record._table} ({cols}) VALUES ({marks})",
            tuple(data.values()),
        )

    def _write(self, conn, record):
        """Single UPDATE of every column; score travels with its inputs."""
        data = self._encode(record)
        record_id = data.pop("id")
        assignments = ", ".join(f"{col} = ?" for col in data)
        conn.execute(
            f"UPDATE {record._table} SET {assignments} WHERE id = ?",
            (*data.values(), record_id),
        )

    def _fetch(self, conn, cls: type, record_id: str):
        row = conn.execute(
            f"SELECT * FROM {cls._table} WHERE id = ?", (record_id,)
        ).fetchone()
        return self._decode(cls, row) if row else None

    def _clear_sibling_next_steps(self, conn, task: Task):
        """Only one next-step task per parent (project, else client)."""
        parent = task.parent()
        if not task.is_next_step or parent is None:
            return
        column, parent_id = parent
        # project tasks of the same client have their own next step
        scope = " AND project_id IS NULL" if column == "client_id" else ""
        conn.execute(
            f"UPDATE tasks SET is_next_step = 0, updated_at = ? "
            f"WHERE {column} = ? AND id != ? AND is_next_step = 1{scope}",
            (utc_now().isoformat(), parent_id, task.id),
        )

    def _log(self, conn, collection: str, record_id: str, action: str, summary: str):
        conn.execute(
            "INSERT INTO activity_log (collection, record_id, action, summary, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (collection, record_id, action, summary, utc_now().isoformat()),
        )

    # ──────────────────────────────────────────
    # Generic CRUD
    # ──────────────────────────────────────────

    def create(self, kind, data: Dict[str, Any]):
        """Create a record from a (partial) dict. Returns the stored record."""
        cls = self._resolve(kind)
        record = cls.from_dict(data)
        name = self._collection_name(cls)
        with _connect(self.db_path) as conn:
            self._insert(conn, record)
            if isinstance(record, Task):
                self._clear_sibling_next_steps(conn, record)
            self._log(conn, name, record.id, "created", record.label)
        return record

    def get(self, kind, record_id: str):
        """Retrieve a record by id, or None."""
        cls = self._resolve(kind)
        with _connect(self.db_path) as conn:
            return self._fetch(conn, cls, record_id)

    def update(self, kind, record_id: str, updates: Dict[str, Any]):
        """
        Apply a partial update and persist it in one transaction.

        For tasks the recomputed score is written by the same statement as
        the fields it derives from.
        """
        cls = self._resolve(kind)
        name = self._collection_name(cls)
        with _connect(self.db_path) as conn:
            record = self._fetch(conn, cls, record_id)
            if record is None:
                raise RecordNotFound(f"{name}/{record_id} not found")
            changed = record.apply(updates)
            if changed:
                self._write(conn, record)
                if isinstance(record, Task):
                    self._clear_sibling_next_steps(conn, record)
                    if set(changed) & set(SCORING_FIELDS):
                        logger.debug(f"Rescored {record.id}: {record.score:.2f}")
                self._log(conn, name, record.id, "updated", ", ".join(changed))
        return record

    def delete(self, kind, record_id: str) -> None:
        """Delete a record. Children keep existing with their link cleared."""
        cls = self._resolve(kind)
        name = self._collection_name(cls)
        with _connect(self.db_path) as conn:
            record = self._fetch(conn, cls, record_id)
            if record is None:
                raise RecordNotFound(f"{name}/{record_id} not found")
            if cls is Task:
                self._unlink_task_from_notes(conn, record_id)
            conn.execute(f"DELETE FROM {cls._table} WHERE id = ?", (record_id,))
            self._log(conn, name, record_id, "deleted", record.label)

    def _unlink_task_from_notes(self, conn, task_id: str):
        rows = conn.execute(
            "SELECT id, linked_tasks FROM notes WHERE linked_tasks LIKE ?",
            (f'%"{task_id}"%',),
        ).fetchall()
        for row in rows:
            linked = [t for t in json.loads(row["linked_tasks"] or "[]") if t != task_id]
            conn.execute(
                "UPDATE notes SET linked_tasks = ? WHERE id = ?",
                (json.dumps(linked), row["id"]),
            )

    def list(self, kind, tag: Optional[str] = None, limit: Optional[int] = None, **filters) -> List:
        """
        List records in creation order.

        Keyword filters match columns exactly (None values are ignored);
        `tag` matches membership in the tags set.
        """
        cls = self._resolve(kind)
        columns = set(cls.field_names())
        clauses, params = [], []
        for col, value in filters.items():
            if value is None:
                continue
            if col not in columns:
                raise StoreError(f"Cannot filter {cls._table} on {col}")
            clauses.append(f"{col} = ?")
            params.append(getattr(value, "value", value))
        if tag:
            if "tags" not in columns:
                raise StoreError(f"{cls._table} has no tags")
            clauses.append("tags LIKE ?")
            params.append(f'%{json.dumps(tag)}%')
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM {cls._table} {where} ORDER BY rowid ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with _connect(self.db_path) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._decode(cls, row) for row in rows]

    # ──────────────────────────────────────────
    # Tasks
    # ──────────────────────────────────────────

    def create_task(self, data: Dict[str, Any]) -> Task:
        """Create a task (Inbox, default scoring inputs unless given)."""
        return self.create(Task, data)

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        return self.update(Task, task_id, updates)

    def delete_task(self, task_id: str) -> None:
        self.delete(Task, task_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.get(Task, task_id)

    def list_tasks(
        self,
        status: Optional[Union[str, TaskStatus]] = None,
        client_id: Optional[str] = None,
        project_id: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[Task]:
        if status is not None:
            status = TaskStatus.from_str(status)
        return self.list(Task, tag=tag, status=status, client_id=client_id, project_id=project_id)

    def bulk_update_tasks(self, task_ids: Iterable[str], updates: Dict[str, Any]) -> List[Task]:
        """Apply the same partial update to many tasks in one transaction."""
        updated = []
        with _connect(self.db_path) as conn:
            for task_id in task_ids:
                task = self._fetch(conn, Task, task_id)
                if task is None:
                    raise RecordNotFound(f"tasks/{task_id} not found")
                changed = task.apply(updates)
                if changed:
                    self._write(conn, task)
                    self._clear_sibling_next_steps(conn, task)
                    self._log(conn, "tasks", task.id, "updated", ", ".join(changed))
                updated.append(task)
        return updated

    def rescore_all(self) -> int:
        """Recompute every stored score. Returns how many rows were stale."""
        stale = 0
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM tasks").fetchall()
            for row in rows:
                task = self._decode(Task, row)
                if row["score"] != task.score:
                    conn.execute("UPDATE tasks SET score = ? WHERE id = ?", (task.score, task.id))
                    stale += 1
        if stale:
            logger.warning(f"Rescored {stale} tasks with stale scores")
        return stale

    # ──────────────────────────────────────────
    # Search
    # ──────────────────────────────────────────

    def search(self, query: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Case-insensitive substring search across collections."""
        query = (query or "").strip()
        if not query:
            return []
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        results = []
        with _connect(self.db_path) as conn:
            for name, columns in SEARCH_COLUMNS.items():
                cls = COLLECTIONS[name]
                where = " OR ".join(f"{col} LIKE ? ESCAPE '\\'" for col in columns)
                rows = conn.execute(
                    f"SELECT * FROM {cls._table} WHERE {where} ORDER BY rowid LIMIT ?",
                    (*([pattern] * len(columns)), limit),
                ).fetchall()
                for row in rows:
                    record = self._decode(cls, row)
                    results.append({"type": name, "id": record.id, "title": record.label})
        return results[:limit]

    # ──────────────────────────────────────────
    # Settings & activity
    # ──────────────────────────────────────────

    def get_setting(self, key: str, default: Any = None) -> Any:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM system_state WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return default
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError:
            return row["value"]

    def set_setting(self, key: str, value: Any) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO system_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """, (key, json.dumps(value), utc_now().isoformat()))

    def get_settings(self) -> Dict[str, Any]:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT key, value FROM system_state").fetchall()
        settings = {}
        for row in rows:
            try:
                settings[row["key"]] = json.loads(row["value"])
            except json.JSONDecodeError:
                settings[row["key"]] = row["value"]
        return settings

    def recent_activity(self, limit: int = 50, record_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent change events first."""
        with _connect(self.db_path) as conn:
            if record_id:
                rows = conn.execute(
                    "SELECT * FROM activity_log WHERE record_id = ? ORDER BY id DESC LIMIT ?",
                    (record_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
        return [dict(r) for r in rows]

    def stats(self) -> Dict[str, Any]:
        """Record counts per collection plus tasks grouped by status."""
        stats = {"collections": {}, "tasks_by_status": {}}
        with _connect(self.db_path) as conn:
            for name, cls in COLLECTIONS.items():
                stats["collections"][name] = conn.execute(
                    f"SELECT COUNT(*) FROM {cls._table}"
                ).fetchone()[0]
            for row in conn.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status"):
                stats["tasks_by_status"][row[0]] = row[1]
        return stats
