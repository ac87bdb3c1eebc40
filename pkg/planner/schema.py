"""
Planner record schema.

One dataclass per table. Every record round-trips through to_dict() /
from_dict(); set-valued columns (tags, links, linked_tasks) are normalized
to sorted unique lists so their stored form is order-independent.

Task scores are derived: Task.rescore() runs on construction and on every
update of the scoring inputs, so a Task never carries a stale score.
"""
import math
import uuid
from enum import Enum
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, Iterable

from .scoring import (
    compute_score,
    DEFAULT_PRIORITY,
    DEFAULT_IMPACT,
    DEFAULT_CONFIDENCE,
    DEFAULT_EFFORT,
)
from .temporal import parse_timestamp

Day = date


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_id(prefix: str) -> str:
    """Short random id, e.g. tsk-3f9a0c1d2."""
    return f"{prefix}-{uuid.uuid4().hex[:9]}"


def normalize_set(values: Optional[Iterable]) -> List[str]:
    """Order-irrelevant set of strings → sorted unique list, blanks dropped."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    return sorted({str(v).strip() for v in values if str(v).strip()})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class _Choice(Enum):
    """Enum with lenient parsing; the first member is the default."""

    @classmethod
    def default(cls):
        return next(iter(cls))

    @classmethod
    def from_str(cls, value) -> "_Choice":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        for member in cls:
            if text.lower() == member.value.lower():
                return member
            if text.upper().replace(" ", "_") == member.name:
                return member
        return cls.default()


class TaskStatus(_Choice):
    """Unordered task label. Done is terminal."""
    INBOX = "Inbox"
    TODO = "Todo"
    DOING = "Doing"
    BLOCKED = "Blocked"
    DONE = "Done"


class ProjectKind(_Choice):
    ACTIVE = "Active"
    PLANNED = "Planned"


class OpportunityStage(_Choice):
    DISCOVERY = "Discovery"
    SCOPING = "Scoping"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    CLOSED_WON = "Closed Won"
    CLOSED_LOST = "Closed Lost"

    @property
    def is_closed(self) -> bool:
        return self in (OpportunityStage.CLOSED_WON, OpportunityStage.CLOSED_LOST)


class Attitude(_Choice):
    NEUTRAL = "Neutral"
    CHAMPION = "Champion"
    SUPPORTER = "Supporter"
    SKEPTIC = "Skeptic"
    BLOCKER = "Blocker"


class RaidKind(_Choice):
    RISK = "Risk"
    ASSUMPTION = "Assumption"
    ISSUE = "Issue"
    DECISION = "Decision"


class Level(_Choice):
    """Low / Medium / High rating used by RAID severity and likelihood."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def default(cls):
        return cls.MEDIUM

    @property
    def rank(self) -> int:
        return {"Low": 1, "Medium": 2, "High": 3}[self.value]


class RaidStatus(_Choice):
    OPEN = "Open"
    MITIGATING = "Mitigating"
    CLOSED = "Closed"


class SourceType(_Choice):
    OTHER = "other"
    HOWTO = "howto"
    ARTICLE = "article"
    DOCS = "docs"
    GITHUB = "github"
    VIDEO = "video"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class _Record:
    """Shared (de)serialization for the record dataclasses."""

    _table = ""
    _prefix = "rec"
    _set_fields: tuple = ()
    _json_fields: tuple = ()      # JSON columns holding objects, not sets
    _time_fields: tuple = ("created_at", "updated_at")
    _bool_fields: tuple = ()
    _enum_fields: dict = {}
    _number_fields: dict = {}     # name -> int / float

    def __post_init__(self):
        for name in self._set_fields:
            setattr(self, name, normalize_set(getattr(self, name)))

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for name in self.field_names():
            value = getattr(self, name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            data[name] = value
        return data

    @classmethod
    def coerce(cls, name: str, value):
        """Convert one raw (JSON or SQLite) value to the field's Python type."""
        if name in cls._enum_fields:
            return cls._enum_fields[name].from_str(value)
        if name in cls._time_fields:
            return parse_timestamp(value)
        if name in cls._bool_fields:
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if name in cls._number_fields:
            if value is None or value == "":
                return None
            try:
                if not math.isfinite(float(value)):
                    return None  # inf / NaN never reach a record
                return cls._number_fields[name](value)
            except (TypeError, ValueError):
                return None
        if name in cls._set_fields:
            return normalize_set(value)
        if name in cls._json_fields:
            return list(value or [])
        return value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Build a record from a dict, ignoring unknown keys."""
        names = set(cls.field_names())
        kwargs = {}
        for key, value in data.items():
            if key not in names:
                continue
            value = cls.coerce(key, value)
            if value is None and key in cls._number_fields:
                continue  # keep the dataclass default
            kwargs[key] = value
        for stamp in ("created_at", "updated_at"):
            if kwargs.get(stamp) is None:
                kwargs.pop(stamp, None)
        if not kwargs.get("id"):
            kwargs["id"] = make_id(cls._prefix)
        return cls(**kwargs)

    def apply(self, updates: Dict[str, Any]) -> List[str]:
        """Apply a partial update in place. Returns the names that changed."""
        changed = []
        names = set(self.field_names()) - {"id", "created_at"}
        for key, value in updates.items():
            if key not in names:
                continue
            value = self.coerce(key, value)
            if value is None and key in self._number_fields:
                continue
            if getattr(self, key) != value:
                setattr(self, key, value)
                changed.append(key)
        if changed:
            self.updated_at = utc_now()
        return changed


@dataclass
class Client(_Record):
    name: str = ""
    id: str = field(default_factory=lambda: make_id("cli"))
    industry: str = ""
    website: str = ""
    email: str = ""
    phone: str = ""
    is_key_account: bool = False
    tags: List[str] = field(default_factory=list)
    contacts: List[Dict[str, Any]] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    next_step: str = ""
    next_step_due: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "clients"
    _prefix = "cli"
    _set_fields = ("tags", "links")
    _json_fields = ("contacts",)
    _time_fields = ("next_step_due", "created_at", "updated_at")
    _bool_fields = ("is_key_account",)

    @property
    def label(self) -> str:
        return self.name


@dataclass
class Project(_Record):
    title: str = ""
    id: str = field(default_factory=lambda: make_id("prj"))
    description: str = ""
    client_id: Optional[str] = None
    kind: ProjectKind = ProjectKind.ACTIVE
    type: str = ""
    status: str = ""
    due_date: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)
    next_step: str = ""
    next_step_due: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "projects"
    _prefix = "prj"
    _set_fields = ("tags",)
    _time_fields = ("due_date", "next_step_due", "created_at", "updated_at")
    _enum_fields = {"kind": ProjectKind}

    @property
    def label(self) -> str:
        return self.title


SCORING_FIELDS = ("priority", "impact", "confidence", "effort")


@dataclass
class Task(_Record):
    """A unit of work, ranked by its ICE score."""
    title: str = ""
    id: str = field(default_factory=lambda: make_id("tsk"))
    description: str = ""
    status: TaskStatus = TaskStatus.INBOX
    priority: int = DEFAULT_PRIORITY
    effort: float = DEFAULT_EFFORT
    impact: int = DEFAULT_IMPACT
    confidence: float = DEFAULT_CONFIDENCE
    score: float = 0.0
    due: Optional[datetime] = None
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    is_next_step: bool = False
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "tasks"
    _prefix = "tsk"
    _set_fields = ("tags",)
    _time_fields = ("due", "created_at", "updated_at")
    _bool_fields = ("is_next_step",)
    _enum_fields = {"status": TaskStatus}
    _number_fields = {"priority": int, "impact": int, "confidence": float, "effort": float}

    def __post_init__(self):
        super().__post_init__()
        self.rescore()

    def rescore(self) -> float:
        self.score = compute_score(self.priority, self.impact, self.confidence, self.effort)
        return self.score

    def apply(self, updates: Dict[str, Any]) -> List[str]:
        # score is derived; a caller-supplied value is ignored
        updates = {k: v for k, v in updates.items() if k != "score"}
        changed = super().apply(updates)
        self.rescore()
        return changed

    def parent(self) -> Optional[tuple]:
        """The record this task can be the next step of: project first, then client."""
        if self.project_id:
            return ("project_id", self.project_id)
        if self.client_id:
            return ("client_id", self.client_id)
        return None

    @property
    def label(self) -> str:
        return self.title


@dataclass
class Note(_Record):
    title: str = ""
    id: str = field(default_factory=lambda: make_id("not"))
    content: str = ""
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    linked_tasks: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "notes"
    _prefix = "not"
    _set_fields = ("linked_tasks", "tags")

    @property
    def label(self) -> str:
        return self.title


@dataclass
class Opportunity(_Record):
    name: str = ""
    id: str = field(default_factory=lambda: make_id("opp"))
    client_id: Optional[str] = None
    stage: OpportunityStage = OpportunityStage.DISCOVERY
    amount: float = 0.0
    probability: float = 0.5
    next_step: str = ""
    next_step_due: Optional[datetime] = None
    notes: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "opportunities"
    _prefix = "opp"
    _time_fields = ("next_step_due", "created_at", "updated_at")
    _enum_fields = {"stage": OpportunityStage}
    _number_fields = {"amount": float, "probability": float}

    def __post_init__(self):
        super().__post_init__()
        if self.probability > 1:
            self.probability = self.probability / 100.0  # percentage
        self.probability = min(1.0, max(0.0, self.probability))
        self.amount = max(0.0, self.amount)

    @property
    def weighted_amount(self) -> float:
        return self.amount * self.probability

    @property
    def label(self) -> str:
        return self.name


@dataclass
class Stakeholder(_Record):
    name: str = ""
    id: str = field(default_factory=lambda: make_id("stk"))
    role: str = ""
    email: str = ""
    phone: str = ""
    client_id: Optional[str] = None
    influence: int = 3
    attitude: Attitude = Attitude.NEUTRAL
    notes: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "stakeholders"
    _prefix = "stk"
    _enum_fields = {"attitude": Attitude}
    _number_fields = {"influence": int}

    def __post_init__(self):
        super().__post_init__()
        self.influence = min(5, max(1, self.influence))

    @property
    def label(self) -> str:
        return self.name


@dataclass
class RaidItem(_Record):
    """One entry of the RAID log (risk, assumption, issue or decision)."""
    title: str = ""
    id: str = field(default_factory=lambda: make_id("rad"))
    kind: RaidKind = RaidKind.RISK
    description: str = ""
    severity: Level = Level.MEDIUM
    likelihood: Level = Level.MEDIUM
    status: RaidStatus = RaidStatus.OPEN
    owner: str = ""
    due: Optional[datetime] = None
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    mitigation: str = ""
    decided_on: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "raid_items"
    _prefix = "rad"
    _time_fields = ("due", "decided_on", "created_at", "updated_at")
    _enum_fields = {
        "kind": RaidKind,
        "severity": Level,
        "likelihood": Level,
        "status": RaidStatus,
    }

    @property
    def label(self) -> str:
        return self.title


@dataclass
class TimeEntry(_Record):
    hours: float = 0.0
    id: str = field(default_factory=lambda: make_id("tim"))
    date: Optional[Day] = None
    billable: bool = True
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    notes: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "time_entries"
    _prefix = "tim"
    _time_fields = ("date", "created_at", "updated_at")
    _bool_fields = ("billable",)
    _number_fields = {"hours": float}

    def __post_init__(self):
        super().__post_init__()
        if self.date is None:
            self.date = utc_now().date()

    @property
    def label(self) -> str:
        return self.notes or f"{self.hours:g}h"


@dataclass
class KnowledgeItem(_Record):
    title: str = ""
    id: str = field(default_factory=lambda: make_id("kno"))
    url: str = ""
    description: str = ""
    tags: List[str] = field(default_factory=list)
    source_type: SourceType = SourceType.OTHER
    last_accessed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    _table = "knowledge_items"
    _prefix = "kno"
    _set_fields = ("tags",)
    _time_fields = ("last_accessed_at", "created_at", "updated_at")
    _enum_fields = {"source_type": SourceType}

    @property
    def label(self) -> str:
        return self.title


# Collection name (API / AppState) → record class
COLLECTIONS = {
    "clients": Client,
    "projects": Project,
    "tasks": Task,
    "notes": Note,
    "opportunities": Opportunity,
    "stakeholders": Stakeholder,
    "raid": RaidItem,
    "time": TimeEntry,
    "knowledge": KnowledgeItem,
}
