"""Base model for coordinator records."""
import copy
import dataclasses
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

E = TypeVar("E", bound="StrictEnum")


class StrictEnum(str, Enum):
    """
    String enum that refuses to guess.

    ``parse`` returns ``None`` for anything it does not recognise so callers
    have to handle the unknown case explicitly instead of receiving a default.
    """

    @classmethod
    def parse(cls: Type[E], value: Any) -> Optional[E]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


def utcnow() -> datetime:
    """Server timestamp used for every record mutation."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _serialize(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_serialize(v) for v in value]
    return value


class StoredModel:
    """
    Base for dataclass records kept in the coordinator store.

    Provides common conversion helpers shared by the API layer and the
    Supabase mirror.
    """

    table_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary (enums as values, datetimes kept)."""
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)  # type: ignore[arg-type]
            if not f.name.startswith('_')
        }

    def to_supabase_dict(self) -> Dict[str, Any]:
        """Convert model to a JSON-compatible dictionary for Supabase."""
        return _serialize(self.to_dict())

    def snapshot(self):
        """Deep copy handed out to callers outside the critical section."""
        return copy.deepcopy(self)

    @staticmethod
    def generate_uuid() -> str:
        """Generate a UUID string."""
        return str(uuid.uuid4())
