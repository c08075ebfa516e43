"""JSON document conversion for domain models.

Stores, the crystallize exporter and tool results all share one document
shape so that a unit written by one backend reads back identically from
another. Optional sections (unit/run meta, step payloads, ended_at) are
omitted when empty.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from .models import (
    ActionStep,
    DbCheck,
    ImpactedUnit,
    ProjectConfig,
    Run,
    SelfCheckItem,
    SelfCheckReport,
    Unit,
)

STEP_PAYLOAD_FIELDS = ("util", "db", "ui", "net", "expect")


def to_plain(value: Any) -> Any:
    """Recursively convert mappings and sequences to plain dicts and lists."""
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def step_to_dict(step: ActionStep) -> dict[str, Any]:
    doc: dict[str, Any] = {"step_id": step.step_id, "name": step.name}
    for name in STEP_PAYLOAD_FIELDS:
        payload = getattr(step, name)
        if payload:
            doc[name] = to_plain(payload)
    return doc


def step_from_dict(doc: Mapping[str, Any]) -> ActionStep:
    return ActionStep(
        step_id=doc.get("step_id", ""),
        name=doc.get("name", ""),
        **{name: dict(doc.get(name) or {}) for name in STEP_PAYLOAD_FIELDS},
    )


def db_check_to_dict(check: DbCheck) -> dict[str, Any]:
    return {
        "check_id": check.check_id,
        "name": check.name,
        "dms": check.dms,
        "sql": check.sql,
        "params": dict(check.params),
        "assert": to_plain(check.assertion),
    }


def db_check_from_dict(doc: Mapping[str, Any]) -> DbCheck:
    return DbCheck(
        check_id=doc.get("check_id", ""),
        name=doc.get("name", ""),
        dms=doc.get("dms", ""),
        sql=doc.get("sql", ""),
        params=dict(doc.get("params") or {}),
        assertion=dict(doc.get("assert") or {}),
    )


def run_to_dict(run: Run) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "run_id": run.run_id,
        "status": run.status,
        "variables": to_plain(run.variables),
        "steps": [step_to_dict(s) for s in run.steps],
        "anchors": dict(run.anchors),
        "db_checks": [db_check_to_dict(c) for c in run.db_checks],
        "artifacts": dict(run.artifacts),
        "started_at": format_timestamp(run.started_at),
    }
    if run.ended_at is not None:
        doc["ended_at"] = format_timestamp(run.ended_at)
    if run.meta:
        doc["meta"] = to_plain(run.meta)
    return doc


def run_from_dict(doc: Mapping[str, Any]) -> Run:
    ended_at = doc.get("ended_at")
    return Run(
        run_id=doc["run_id"],
        status=doc.get("status", ""),
        variables=dict(doc.get("variables") or {}),
        steps=[step_from_dict(s) for s in doc.get("steps") or []],
        anchors=dict(doc.get("anchors") or {}),
        db_checks=[db_check_from_dict(c) for c in doc.get("db_checks") or []],
        artifacts=dict(doc.get("artifacts") or {}),
        started_at=parse_timestamp(doc["started_at"]),
        ended_at=parse_timestamp(ended_at) if ended_at else None,
        meta=dict(doc.get("meta") or {}),
    )


def unit_to_dict(unit: Unit) -> dict[str, Any]:
    """Convert a unit (with all runs) to its persisted JSON document."""
    doc: dict[str, Any] = {
        "unit_id": unit.unit_id,
        "title": unit.title,
        "env": to_plain(unit.env),
    }
    if unit.meta:
        doc["meta"] = to_plain(unit.meta)
    doc["runs"] = [run_to_dict(r) for r in unit.runs]
    doc["created_at"] = format_timestamp(unit.created_at)
    doc["updated_at"] = format_timestamp(unit.updated_at)
    return doc


def unit_from_dict(doc: Mapping[str, Any]) -> Unit:
    """Rebuild a unit from its persisted JSON document.

    Raises:
        KeyError: If unit_id or a timestamp is missing.
        ValueError: If a timestamp is malformed or invariants are violated.
    """
    return Unit(
        unit_id=doc["unit_id"],
        title=doc.get("title", ""),
        env=dict(doc.get("env") or {}),
        meta=dict(doc.get("meta") or {}),
        runs=[run_from_dict(r) for r in doc.get("runs") or []],
        created_at=parse_timestamp(doc["created_at"]),
        updated_at=parse_timestamp(doc["updated_at"]),
    )


def project_config_to_dict(config: ProjectConfig) -> dict[str, Any]:
    return {
        "project_key": config.project_key,
        "env": dict(config.env),
        "runner_command": config.runner_command,
        "runner_dir": config.runner_dir,
        "artifacts_dir": config.artifacts_dir,
        "updated_at": config.updated_at,
    }


def project_config_from_dict(doc: Mapping[str, Any]) -> ProjectConfig:
    return ProjectConfig(
        project_key=doc.get("project_key", ""),
        env=dict(doc.get("env") or {}),
        runner_command=doc.get("runner_command", ""),
        runner_dir=doc.get("runner_dir", ""),
        artifacts_dir=doc.get("artifacts_dir", ""),
        updated_at=doc.get("updated_at", ""),
    )


def self_check_item_to_dict(item: SelfCheckItem) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "name": item.name,
        "category": item.category,
        "passed": item.passed,
        "message": item.message,
    }
    if item.details:
        doc["details"] = to_plain(item.details)
    return doc


def self_check_report_to_dict(report: SelfCheckReport) -> dict[str, Any]:
    return {
        "unit_id": report.unit_id,
        "run_id": report.run_id,
        "all_passed": report.all_passed,
        "checks": [self_check_item_to_dict(c) for c in report.checks],
        "summary": report.summary,
    }


def impacted_unit_to_dict(impacted: ImpactedUnit) -> dict[str, Any]:
    return {
        "unit_id": impacted.unit_id,
        "title": impacted.title,
        "reasons": list(impacted.reasons),
    }
