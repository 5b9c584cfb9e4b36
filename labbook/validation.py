"""
Structural validation for labbook entities.

Two entry styles share one set of checks:

    Fail-fast   — entity constructors (and therefore create_* factories and
                  every transition) raise ValidationError from __post_init__.
    Discriminated — validate_*(raw) returns a ValidationResult and never
                  raises for malformed input.

Issue paths are camelCase and dotted, matching the persisted record
(e.g. "load.affectedHypotheses.0", "proposedAlternative.description").
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from .domain import ensure_utc, parse_timestamp
from .identifiers import ID_FORMATS, IdKind, is_valid_anchor, is_valid_session_id, matches_kind


T = TypeVar("T")
E = TypeVar("E", bound=Enum)


# =============================================================================
# ISSUES AND RESULTS
# =============================================================================

@dataclass(frozen=True)
class ValidationIssue:
    """One structural problem, located by its dotted field path."""
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class ValidationError(Exception):
    """Raised when a record violates its structural constraints."""

    def __init__(self, issues: Iterable[ValidationIssue]):
        self.issues = tuple(issues)
        super().__init__("; ".join(str(issue) for issue in self.issues))


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of a validate_* call.

    Exactly one of data / errors is meaningful: data when valid,
    errors otherwise.
    """
    valid: bool
    data: Optional[Any] = None
    errors: tuple[ValidationIssue, ...] = ()

    @classmethod
    def success(cls, data: Any) -> "ValidationResult":
        return cls(valid=True, data=data)

    @classmethod
    def failure(cls, errors: Iterable[ValidationIssue]) -> "ValidationResult":
        return cls(valid=False, errors=tuple(errors))

    def unwrap(self) -> Any:
        """Return data, or raise ValidationError with the collected issues."""
        if not self.valid:
            raise ValidationError(self.errors)
        return self.data


# =============================================================================
# FIELD CHECKS
# =============================================================================

def join_path(*parts: object) -> str:
    return ".".join(str(p) for p in parts if p != "")


class IssueCollector:
    """Accumulates issues so a record reports every violation at once."""

    def __init__(self):
        self.issues: list[ValidationIssue] = []

    def __bool__(self) -> bool:
        return bool(self.issues)

    def add(self, path: str, message: str) -> None:
        issue = ValidationIssue(path, message)
        if issue not in self.issues:
            self.issues.append(issue)

    def extend(self, issues: Iterable[ValidationIssue]) -> None:
        for issue in issues:
            self.add(issue.path, issue.message)

    def raise_if_any(self) -> None:
        if self.issues:
            raise ValidationError(self.issues)

    def text(
        self,
        path: str,
        value: Optional[str],
        min_length: int = 0,
        max_length: Optional[int] = None,
        required: bool = True,
    ) -> None:
        """Check a string field's presence and length bounds."""
        if value is None:
            if required:
                self.add(path, "Required")
            return
        if not isinstance(value, str):
            self.add(path, "Expected a string")
            return
        if min_length and len(value) < min_length:
            if min_length == 1:
                self.add(path, "Must not be empty")
            else:
                self.add(path, f"Must be at least {min_length} characters")
        if max_length is not None and len(value) > max_length:
            self.add(path, f"Must be at most {max_length} characters")

    def identifier(
        self,
        path: str,
        value: Optional[str],
        kind: IdKind,
        required: bool = True,
    ) -> None:
        if value is None:
            if required:
                self.add(path, "Required")
            return
        if not matches_kind(value, kind):
            self.add(path, f"Invalid {kind.name.lower()} id format (expected {ID_FORMATS[kind]})")

    def identifiers(self, path: str, values: Sequence[str], kind: IdKind) -> None:
        for index, value in enumerate(values):
            self.identifier(join_path(path, index), value, kind)

    def session(self, path: str, value: Optional[str]) -> None:
        if value is None:
            self.add(path, "Required")
        elif not is_valid_session_id(value):
            self.add(path, "Invalid session id format (expected RS...)")

    def anchors(self, path: str, values: Sequence[str]) -> None:
        for index, value in enumerate(values):
            if not is_valid_anchor(value):
                self.add(join_path(path, index), "Invalid anchor format (expected §n or §n-m)")

    def member(self, path: str, value: object, enum_cls: type[Enum]) -> None:
        if not isinstance(value, enum_cls):
            self.add(path, f"Expected {enum_cls.__name__}")

    def timestamp(self, path: str, value: object, required: bool = True) -> None:
        if value is None:
            if required:
                self.add(path, "Required")
        elif not isinstance(value, datetime):
            self.add(path, "Expected a datetime")


def freeze_fields(record: object, *names: str) -> None:
    """Coerce list-like fields of a frozen dataclass to tuples in place."""
    for name in names:
        value = getattr(record, name)
        if isinstance(value, (list, set, frozenset)):
            object.__setattr__(record, name, tuple(value))


def normalize_timestamps(record: object, *names: str) -> None:
    """Treat naive datetimes on a frozen dataclass as UTC."""
    for name in names:
        value = getattr(record, name)
        if isinstance(value, datetime):
            object.__setattr__(record, name, ensure_utc(value))


# =============================================================================
# RAW RECORD READING
# =============================================================================

class RawReader:
    """
    Typed access to a persisted (camelCase) record.

    Every read that fails records an issue in the shared collector and
    returns a placeholder, so one pass reports all type problems.
    """

    def __init__(self, raw: Mapping[str, Any], collector: IssueCollector, prefix: str = ""):
        self.raw = raw
        self.collector = collector
        self.prefix = prefix

    def path(self, key: object) -> str:
        return join_path(self.prefix, key)

    def _get(self, key: str, required: bool) -> Any:
        value = self.raw.get(key)
        if value is None and required:
            self.collector.add(self.path(key), "Required")
        return value

    def string(self, key: str, required: bool = True) -> Optional[str]:
        value = self._get(key, required)
        if value is not None and not isinstance(value, str):
            self.collector.add(self.path(key), "Expected a string")
            return None
        return value

    def string_list(self, key: str) -> tuple[str, ...]:
        value = self.raw.get(key)
        if value is None:
            return ()
        if isinstance(value, str) or not isinstance(value, Sequence):
            self.collector.add(self.path(key), "Expected an array of strings")
            return ()
        items = []
        for index, item in enumerate(value):
            if isinstance(item, str):
                items.append(item)
            else:
                self.collector.add(self.path(join_path(key, index)), "Expected a string")
        return tuple(items)

    def boolean(self, key: str, default: bool = False) -> bool:
        value = self.raw.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self.collector.add(self.path(key), "Expected a boolean")
            return default
        return value

    def integer(self, key: str, required: bool = False) -> Optional[int]:
        value = self._get(key, required)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            self.collector.add(self.path(key), "Expected an integer")
            return None
        return value

    def choice(self, key: str, enum_cls: type[E], default: Optional[E] = None) -> Optional[E]:
        value = self._get(key, default is None)
        if value is None:
            return default
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(f"'{m.value}'" for m in enum_cls)
            self.collector.add(self.path(key), f"Invalid value '{value}' (expected one of {allowed})")
            return default

    def timestamp(self, key: str, required: bool = True) -> Optional[datetime]:
        value = self._get(key, required)
        if value is None:
            return None
        if isinstance(value, datetime):
            return ensure_utc(value)
        if not isinstance(value, str):
            self.collector.add(self.path(key), "Expected an ISO-8601 timestamp")
            return None
        try:
            return parse_timestamp(value)
        except ValueError:
            self.collector.add(self.path(key), f"Invalid timestamp '{value}'")
            return None

    def child(self, key: str, required: bool = True) -> Optional["RawReader"]:
        value = self._get(key, required)
        if value is None:
            return None
        if not isinstance(value, Mapping):
            self.collector.add(self.path(key), "Expected an object")
            return None
        return RawReader(value, self.collector, self.path(key))

    def children(self, key: str) -> list["RawReader"]:
        value = self.raw.get(key)
        if value is None:
            return []
        if isinstance(value, (str, Mapping)) or not isinstance(value, Sequence):
            self.collector.add(self.path(key), "Expected an array")
            return []
        readers = []
        for index, item in enumerate(value):
            item_path = self.path(join_path(key, index))
            if isinstance(item, Mapping):
                readers.append(RawReader(item, self.collector, item_path))
            else:
                self.collector.add(item_path, "Expected an object")
        return readers


def run_validation(raw: object, parse: Callable[[RawReader], T]) -> ValidationResult:
    """
    Drive a record parser without letting structural problems escape.

    parse reads fields through the RawReader and constructs the entity;
    type problems and the entity's own constraint violations are merged
    into one failure result.
    """
    collector = IssueCollector()
    if not isinstance(raw, Mapping):
        collector.add("", "Expected an object")
        return ValidationResult.failure(collector.issues)

    try:
        data = parse(RawReader(raw, collector))
    except ValidationError as exc:
        collector.extend(exc.issues)
        data = None

    if collector:
        return ValidationResult.failure(collector.issues)
    return ValidationResult.success(data)
