from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Union


RECURRENCE_TYPES = ("none", "daily", "weekly", "monthly")
TASK_STATUSES = ("pending", "in progress", "completed")
DEFAULT_MAX_OCCURRENCES = 500


def _ensure_tz(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StorageConfig:
    db_path: str = "data/tasks.db"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StorageConfig":
        data = data or {}
        return cls(db_path=str(data.get("db_path", "data/tasks.db")).strip() or "data/tasks.db")


@dataclass
class SchedulingConfig:
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SchedulingConfig":
        data = data or {}
        return cls(max_occurrences=max(1, int(data.get("max_occurrences", DEFAULT_MAX_OCCURRENCES))))


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        return cls(
            level=str(data.get("level", "INFO")).strip().upper() or "INFO",
            log_dir=str(data.get("log_dir", "") or "").strip(),
        )


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ServerConfig":
        data = data or {}
        return cls(
            host=str(data.get("host", "0.0.0.0")).strip() or "0.0.0.0",
            port=int(data.get("port", 8080)),
        )


@dataclass
class AppConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            storage=StorageConfig.from_dict(data.get("storage")),
            scheduling=SchedulingConfig.from_dict(data.get("scheduling")),
            logging=LoggingConfig.from_dict(data.get("logging")),
            server=ServerConfig.from_dict(data.get("server")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass(frozen=True)
class RecurrenceRule:
    type: str = "none"
    every: int = 1
    until: datetime | None = None
    days_of_week: tuple[int, ...] = ()

    @property
    def is_recurring(self) -> bool:
        return self.type != "none"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "every": self.every,
            "until": serialize_datetime(self.until),
            "days_of_week": list(self.days_of_week),
        }


NO_RECURRENCE = RecurrenceRule()


@dataclass(frozen=True)
class Standalone:
    pass


@dataclass(frozen=True)
class SeriesMember:
    series_id: str


Membership = Union[Standalone, SeriesMember]

STANDALONE = Standalone()


def membership_from_columns(is_recurring: bool, series_id: str | None) -> Membership:
    if is_recurring and series_id:
        return SeriesMember(series_id=series_id)
    return STANDALONE


def membership_to_columns(membership: Membership) -> tuple[bool, str | None]:
    if isinstance(membership, SeriesMember):
        return True, membership.series_id
    if isinstance(membership, Standalone):
        return False, None
    raise TypeError(f"Unknown membership: {membership!r}")


@dataclass(frozen=True)
class Occurrence:
    start: datetime
    end: datetime


@dataclass
class TaskRecord:
    owner: str
    title: str
    id: str = ""
    description: str = ""
    status: str = "pending"
    due_date: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    membership: Membership = STANDALONE
    recurrence: RecurrenceRule = NO_RECURRENCE
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_recurring(self) -> bool:
        return isinstance(self.membership, SeriesMember)

    @property
    def series_id(self) -> str | None:
        if isinstance(self.membership, SeriesMember):
            return self.membership.series_id
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "due_date": serialize_datetime(self.due_date),
            "start_time": serialize_datetime(self.start_time),
            "end_time": serialize_datetime(self.end_time),
            "is_recurring": self.is_recurring,
            "series_id": self.series_id,
            "recurrence": self.recurrence.to_dict(),
            "created_at": serialize_datetime(self.created_at),
            "updated_at": serialize_datetime(self.updated_at),
        }

    def clone(self) -> "TaskRecord":
        return TaskRecord(
            owner=self.owner,
            title=self.title,
            id=self.id,
            description=self.description,
            status=self.status,
            due_date=self.due_date,
            start_time=self.start_time,
            end_time=self.end_time,
            membership=self.membership,
            recurrence=self.recurrence,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def with_updates(self, **kwargs: Any) -> "TaskRecord":
        copied = self.clone()
        for key, value in kwargs.items():
            setattr(copied, key, value)
        return copied


@dataclass
class SeriesResult:
    series_id: str
    count: int
    items: list[TaskRecord]

    def to_dict(self) -> dict[str, Any]:
        return {
            "series_id": self.series_id,
            "count": self.count,
            "items": [item.to_dict() for item in self.items],
        }
