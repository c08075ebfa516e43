"""Domain models for the Syzygy test-recording system.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, TypeAlias

from .errors import SyzygyError

# Open payloads (env, meta, step categories) round-trip through JSON,
# so their values are restricted to what JSON can carry.
JsonValue: TypeAlias = (
    None | bool | int | float | str | list["JsonValue"] | dict[str, "JsonValue"]
)
JsonObject: TypeAlias = dict[str, JsonValue]

RUN_STATUS_IN_PROGRESS = "in_progress"


def _freeze(payload: Mapping[str, Any] | None) -> MappingProxyType[str, Any]:
    """Wrap a payload mapping in a read-only proxy (empty when None)."""
    if isinstance(payload, MappingProxyType):
        return payload
    return MappingProxyType(dict(payload or {}))


@dataclass(frozen=True)
class ActionStep:
    """One recorded action in a run.

    Each category payload (util, db, ui, net) is independent and may be
    empty. Whether ui/net/db are populated feeds the three-layer
    alignment rule of the self-check.
    """

    name: str = ""
    util: Mapping[str, Any] = field(default_factory=dict)
    db: Mapping[str, Any] = field(default_factory=dict)
    ui: Mapping[str, Any] = field(default_factory=dict)
    net: Mapping[str, Any] = field(default_factory=dict)
    expect: Mapping[str, Any] = field(default_factory=dict)
    step_id: str = ""  # assigned by the service on append

    def __post_init__(self) -> None:
        """Convert payload dicts to read-only proxies."""
        for name in ("util", "db", "ui", "net", "expect"):
            object.__setattr__(self, name, _freeze(getattr(self, name)))

    @property
    def touches_layers(self) -> bool:
        """True if any of the ui, net or db payloads is non-empty."""
        return bool(self.ui) or bool(self.net) or bool(self.db)


@dataclass(frozen=True)
class DbCheck:
    """One database assertion recorded against a run."""

    name: str = ""
    dms: str = ""  # data-management-system identifier, e.g. "mysql"
    sql: str = ""
    params: Mapping[str, str] = field(default_factory=dict)
    assertion: Mapping[str, Any] = field(default_factory=dict)  # "assert" on the wire
    check_id: str = ""  # assigned by the service on append

    def __post_init__(self) -> None:
        """Convert params and assertion dicts to read-only proxies."""
        object.__setattr__(self, "params", _freeze(self.params))
        object.__setattr__(self, "assertion", _freeze(self.assertion))


@dataclass
class Run:
    """One execution attempt against a unit.

    Steps and db checks are append-only; anchors are last-write-wins.
    The meta mapping records replay outcomes and anchor provenance.
    """

    run_id: str
    started_at: datetime
    status: str = RUN_STATUS_IN_PROGRESS
    variables: dict[str, Any] = field(default_factory=dict)
    steps: list[ActionStep] = field(default_factory=list)
    anchors: dict[str, str] = field(default_factory=dict)
    db_checks: list[DbCheck] = field(default_factory=list)
    artifacts: dict[str, str] = field(default_factory=dict)
    ended_at: datetime | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate run invariants on creation or deserialization."""
        if not self.run_id or not self.run_id.strip():
            raise ValueError("run_id must be a non-empty string")
        if self.ended_at is not None and self.ended_at < self.started_at:
            raise ValueError(
                f"ended_at ({self.ended_at}) cannot be before "
                f"started_at ({self.started_at})"
            )

    def append_step(self, step: ActionStep) -> None:
        """Append a step; its step_id must already be assigned."""
        if not step.step_id:
            raise ValueError("step_id must be assigned before appending")
        self.steps.append(step)

    def append_db_check(self, check: DbCheck) -> None:
        """Append a db check; its check_id must already be assigned."""
        if not check.check_id:
            raise ValueError("check_id must be assigned before appending")
        self.db_checks.append(check)

    def set_anchor(self, key: str, value: str, source: str) -> None:
        """Upsert an anchor and record where it came from."""
        self.anchors[key] = value
        self.meta["last_anchor_source"] = source

    def record_artifacts(self, paths: Mapping[str, str]) -> None:
        """Replace the artifact map with freshly produced paths."""
        self.artifacts = dict(paths)

    def record_replay(self, result: Mapping[str, Any], executed_at: datetime) -> None:
        """Store a replay outcome so the self-check can see it."""
        self.meta["replay_result"] = dict(result)
        self.meta["replay_executed_at"] = executed_at.isoformat()


@dataclass
class Unit:
    """A named test subject with an ordered history of runs.

    unit_id is immutable once created. updated_at is refreshed on every
    mutation and never precedes created_at.
    """

    unit_id: str
    created_at: datetime
    updated_at: datetime
    title: str = ""
    env: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    runs: list[Run] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate unit invariants on creation or deserialization."""
        if not self.unit_id or not self.unit_id.strip():
            raise ValueError("unit_id must be a non-empty string")
        if self.updated_at < self.created_at:
            raise ValueError(
                f"updated_at ({self.updated_at}) cannot be before "
                f"created_at ({self.created_at})"
            )

    def touch(self, now: datetime) -> None:
        """Refresh updated_at after a mutation."""
        self.updated_at = max(now, self.created_at)

    def add_run(self, run: Run) -> None:
        """Append a run; runs are never removed or reordered."""
        if any(r.run_id == run.run_id for r in self.runs):
            raise ValueError(f"Run {run.run_id} already belongs to unit {self.unit_id}")
        self.runs.append(run)

    def find_run(self, run_id: str) -> Run:
        """Return the run with the given id.

        Raises:
            SyzygyError: run_not_found if no run matches.
        """
        for run in self.runs:
            if run.run_id == run_id:
                return run
        raise SyzygyError("run_not_found", "run not found")

    def latest_run(self) -> Run | None:
        """Return the most recently created run, if any."""
        return self.runs[-1] if self.runs else None

    def merge_meta(self, meta: Mapping[str, Any]) -> None:
        """Merge caller-supplied meta, overwriting per key."""
        self.meta.update(meta)


def apply_unit_header(
    unit: Unit, title: str = "", env: Mapping[str, Any] | None = None
) -> Unit:
    """Apply the get-or-create merge policy to an existing unit.

    The title is overwritten only by a non-empty title, and the env only
    by a non-empty env. Everything else on the unit is left untouched.
    """
    if title:
        unit.title = title
    if env:
        unit.env = dict(env)
    return unit


def new_unit(
    unit_id: str, now: datetime, title: str = "", env: Mapping[str, Any] | None = None
) -> Unit:
    """Build a fresh unit for an unseen unit_id."""
    return Unit(
        unit_id=unit_id,
        created_at=now,
        updated_at=now,
        title=title,
        env=dict(env or {}),
    )


@dataclass
class ProjectConfig:
    """Per-project runtime settings written by project initialisation."""

    project_key: str
    env: dict[str, str] = field(default_factory=dict)
    runner_command: str = ""
    runner_dir: str = ""
    artifacts_dir: str = ""
    updated_at: str = ""  # RFC 3339


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an external command launched for replay."""

    ok: bool
    output: str
    error: str | None = None


@dataclass(frozen=True)
class SelfCheckItem:
    """One named compliance check."""

    name: str
    category: str
    passed: bool
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Convert details dict to read-only proxy."""
        object.__setattr__(self, "details", _freeze(self.details))


@dataclass(frozen=True)
class SelfCheckReport:
    """Aggregate outcome of a self-check over one run."""

    unit_id: str
    run_id: str
    all_passed: bool
    checks: tuple[SelfCheckItem, ...]
    summary: str

    @property
    def failed_checks(self) -> tuple[str, ...]:
        """Names of checks that did not pass, in evaluation order."""
        return tuple(c.name for c in self.checks if not c.passed)


@dataclass(frozen=True)
class ImpactedUnit:
    """A unit whose touchpoints intersect a change set."""

    unit_id: str
    title: str
    reasons: tuple[str, ...]
