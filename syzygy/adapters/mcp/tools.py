"""Tool catalog and dispatch.

ToolRegistry is the driving adapter between tools/call requests and
UnitService. It validates argument types (values are never coerced),
resolves an omitted run_id to the unit's latest run, decodes payloads,
and shapes service results into the JSON objects returned to the agent.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from syzygy.core.errors import SyzygyError
from syzygy.core.models import ActionStep, DbCheck
from syzygy.core.serialization import (
    impacted_unit_to_dict,
    project_config_to_dict,
    self_check_report_to_dict,
)
from syzygy.core.unit_service import UnitService

from .decoding import Decoded, Failed, decode_object_payload
from .protocol import ToolDefinition

logger = logging.getLogger(__name__)

STEP_OBJECT_FIELDS = ("util", "db", "ui", "net", "expect")

ToolHandler = Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]


def _string() -> dict[str, Any]:
    return {"type": "string"}


def _object() -> dict[str, Any]:
    return {"type": "object"}


def _string_array() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


def _schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


TOOL_CATALOG: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        "syzygy_project_init",
        "Initialize the project runtime config (env such as DB and BASE_URL, "
        "artifacts location, replay runner command and directory)",
        _schema(
            {
                "project_key": _string(),
                "env": _object(),
                "runner_command": _string(),
                "runner_dir": _string(),
            },
            [],
        ),
    ),
    ToolDefinition(
        "syzygy_unit_start",
        "Start a Syzygy unit run (creates the unit on first use)",
        _schema(
            {
                "unit_id": _string(),
                "title": _string(),
                "env": _object(),
                "variables": _object(),
            },
            ["unit_id"],
        ),
    ),
    ToolDefinition(
        "syzygy_unit_meta_set",
        "Set unit meta such as tags and touchpoints",
        _schema({"unit_id": _string(), "meta": _object()}, ["unit_id", "meta"]),
    ),
    ToolDefinition(
        "syzygy_unit_meta_set_json",
        "Set unit meta from an object, a JSON string or a base64-encoded JSON string",
        _schema(
            {
                "unit_id": _string(),
                "meta": _object(),
                "meta_json": _string(),
                "meta_base64": _string(),
            },
            ["unit_id"],
        ),
    ),
    ToolDefinition(
        "syzygy_plan_impacted_units",
        "Plan which units to replay for changed files, APIs, tables or tags",
        _schema(
            {
                "changed_files": _string_array(),
                "changed_apis": _string_array(),
                "changed_tables": _string_array(),
                "tags": _string_array(),
            },
            [],
        ),
    ),
    ToolDefinition(
        "syzygy_step_append",
        "Append an action step to a run",
        _schema(
            {"unit_id": _string(), "run_id": _string(), "step": _object()},
            ["unit_id", "run_id", "step"],
        ),
    ),
    ToolDefinition(
        "syzygy_step_append_json",
        "Append an action step from an object, a JSON string or a base64-encoded JSON string",
        _schema(
            {
                "unit_id": _string(),
                "run_id": _string(),
                "step_json": _string(),
                "step": _object(),
                "step_base64": _string(),
            },
            ["unit_id", "run_id"],
        ),
    ),
    ToolDefinition(
        "syzygy_steps_append_batch",
        "Append several action steps to a run in order",
        _schema(
            {
                "unit_id": _string(),
                "run_id": _string(),
                "steps": {"type": "array", "items": _object()},
            },
            ["unit_id", "run_id", "steps"],
        ),
    ),
    ToolDefinition(
        "syzygy_anchor_set",
        "Set an anchor value on a run",
        _schema(
            {
                "unit_id": _string(),
                "run_id": _string(),
                "key": _string(),
                "value": _string(),
                "source": _string(),
            },
            ["unit_id", "run_id", "key", "value"],
        ),
    ),
    ToolDefinition(
        "syzygy_dbcheck_append",
        "Append a database assertion to a run",
        _schema(
            {"unit_id": _string(), "run_id": _string(), "db_check": _object()},
            ["unit_id", "run_id", "db_check"],
        ),
    ),
    ToolDefinition(
        "syzygy_crystallize",
        "Generate replayable artifacts (spec.json and a Playwright stub) for a run",
        _schema(
            {
                "unit_id": _string(),
                "run_id": _string(),
                "template": _string(),
                "output_dir": _string(),
            },
            ["unit_id", "run_id"],
        ),
    ),
    ToolDefinition(
        "syzygy_replay",
        "Replay a crystallized run with the project runner or an explicit command",
        _schema(
            {
                "unit_id": _string(),
                "run_id": _string(),
                "command": _string(),
                "args": _string_array(),
                "cwd": _string(),
                "env": _object(),
            },
            ["unit_id", "run_id"],
        ),
    ),
    ToolDefinition(
        "syzygy_selfcheck",
        "Self-check a unit run for SYZYGY compliance. Call this after development "
        "to verify: 1. crystallize completed 2. replay executed and succeeded "
        "3. three-layer alignment achieved 4. delivery format is correct",
        _schema({"unit_id": _string(), "run_id": _string()}, ["unit_id", "run_id"]),
    ),
)


# ----------------------------------------------------------------------
# Argument extraction
# ----------------------------------------------------------------------


def require_str(args: Mapping[str, Any], key: str, code: str = "invalid_args") -> str:
    """Return a required non-empty string argument."""
    value = args.get(key)
    if value is None or value == "":
        raise SyzygyError(code, f"{key} is required")
    if not isinstance(value, str):
        raise SyzygyError(code, f"{key} must be a string")
    return value


def optional_str(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise SyzygyError("invalid_args", f"{key} must be a string")
    return value


def optional_object(args: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = args.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SyzygyError("invalid_args", f"{key} must be an object")
    return value


def optional_str_list(args: Mapping[str, Any], key: str) -> list[str]:
    value = args.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise SyzygyError("invalid_args", f"{key} must be an array of strings")
    return value


def parse_step(raw: Mapping[str, Any], code: str = "invalid_step") -> ActionStep:
    """Build an ActionStep from a step object.

    Raises:
        SyzygyError: With ``code`` when a field has the wrong type.
    """
    name = raw.get("name")
    if name is not None and not isinstance(name, str):
        raise SyzygyError(code, "step.name must be a string")

    payloads: dict[str, dict[str, Any]] = {}
    for key in STEP_OBJECT_FIELDS:
        value = raw.get(key)
        if value is None:
            continue
        if not isinstance(value, dict):
            raise SyzygyError(code, f"step.{key} must be an object")
        payloads[key] = value

    return ActionStep(name=name or "", **payloads)


def parse_db_check(raw: Mapping[str, Any]) -> DbCheck:
    """Build a DbCheck from a db_check object.

    Raises:
        SyzygyError: invalid_db_check when a field has the wrong type.
    """
    fields: dict[str, str] = {}
    for key in ("name", "dms", "sql"):
        value = raw.get(key)
        if value is not None and not isinstance(value, str):
            raise SyzygyError("invalid_db_check", f"db_check.{key} must be a string")
        fields[key] = value or ""

    params = raw.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict) or not all(isinstance(v, str) for v in params.values()):
        raise SyzygyError("invalid_db_check", "db_check.params must be an object of strings")

    assertion = raw.get("assert")
    if assertion is None:
        assertion = {}
    if not isinstance(assertion, dict):
        raise SyzygyError("invalid_db_check", "db_check.assert must be an object")

    return DbCheck(params=params, assertion=assertion, **fields)


class ToolRegistry:
    """Maps tool names to UnitService operations."""

    def __init__(self, service: UnitService):
        self.service = service
        self._handlers: dict[str, ToolHandler] = {
            "syzygy_project_init": self._project_init,
            "syzygy_unit_start": self._unit_start,
            "syzygy_unit_meta_set": self._unit_meta_set,
            "syzygy_unit_meta_set_json": self._unit_meta_set_json,
            "syzygy_plan_impacted_units": self._plan_impacted_units,
            "syzygy_step_append": self._step_append,
            "syzygy_step_append_json": self._step_append_json,
            "syzygy_steps_append_batch": self._steps_append_batch,
            "syzygy_anchor_set": self._anchor_set,
            "syzygy_dbcheck_append": self._dbcheck_append,
            "syzygy_crystallize": self._crystallize,
            "syzygy_replay": self._replay,
            "syzygy_selfcheck": self._selfcheck,
        }

    def list_tools(self) -> list[dict[str, Any]]:
        return [tool.to_dict() for tool in TOOL_CATALOG]

    async def call_tool(self, name: str, args: Mapping[str, Any] | None) -> dict[str, Any]:
        """Dispatch a tool call.

        Raises:
            SyzygyError: tool_not_implemented for unknown names, or any
                domain error raised by the tool.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise SyzygyError("tool_not_implemented", f"tool not implemented: {name}")

        logger.debug(f"Calling tool {name}", extra={"tool": name})
        return await handler(args or {})

    async def _resolve_run_id(self, args: Mapping[str, Any], unit_id: str) -> str:
        """Use the given run_id, or the latest run when it is omitted or empty."""
        run_id = optional_str(args, "run_id")
        if run_id:
            return run_id
        return await self.service.latest_run_id(unit_id)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _project_init(self, args: Mapping[str, Any]) -> dict[str, Any]:
        config, location = await self.service.project_init(
            project_key=optional_str(args, "project_key"),
            env=optional_object(args, "env"),
            runner_command=optional_str(args, "runner_command"),
            runner_dir=optional_str(args, "runner_dir"),
        )
        return {
            "ok": True,
            "config_path": location,
            "config": project_config_to_dict(config),
        }

    async def _unit_start(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id", code="invalid_unit_id")
        run = await self.service.unit_start(
            unit_id,
            title=optional_str(args, "title"),
            env=optional_object(args, "env"),
            variables=optional_object(args, "variables"),
        )
        return {"unit_id": unit_id, "run_id": run.run_id}

    async def _unit_meta_set(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        meta = args.get("meta")
        if not isinstance(meta, dict):
            raise SyzygyError("invalid_args", "unit_id and meta are required")
        await self.service.set_unit_meta(unit_id, meta)
        return {"ok": True}

    async def _unit_meta_set_json(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        outcome = decode_object_payload(args, "meta")
        if isinstance(outcome, Failed):
            raise SyzygyError(outcome.code, outcome.message)
        if not isinstance(outcome, Decoded):
            raise SyzygyError(
                "invalid_args",
                "missing meta. Provide meta (object) or meta_json (string) "
                "or meta_base64 (string)",
            )
        await self.service.set_unit_meta(unit_id, outcome.value)
        return {"ok": True}

    async def _plan_impacted_units(self, args: Mapping[str, Any]) -> dict[str, Any]:
        impacted = await self.service.plan_impacted_units(
            changed_files=optional_str_list(args, "changed_files"),
            changed_apis=optional_str_list(args, "changed_apis"),
            changed_tables=optional_str_list(args, "changed_tables"),
            tags=optional_str_list(args, "tags"),
        )
        return {"impacted_units": [impacted_unit_to_dict(u) for u in impacted]}

    async def _step_append(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        raw = args.get("step")
        if not isinstance(raw, dict):
            raise SyzygyError("invalid_step", "step must be object; missing or wrong type")
        step = parse_step(raw)
        run_id = await self._resolve_run_id(args, unit_id)
        recorded = await self.service.step_append(unit_id, run_id, step)
        return {"step_id": recorded.step_id}

    async def _step_append_json(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        outcome = decode_object_payload(args, "step", type_code="invalid_step")
        if isinstance(outcome, Failed):
            raise SyzygyError(outcome.code, outcome.message)
        if not isinstance(outcome, Decoded):
            raise SyzygyError(
                "invalid_step",
                "missing step. Provide step (object) or step_json (string) "
                "or step_base64 (string)",
            )
        step = parse_step(outcome.value)
        run_id = await self._resolve_run_id(args, unit_id)
        recorded = await self.service.step_append(unit_id, run_id, step)
        return {"step_id": recorded.step_id}

    async def _steps_append_batch(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        raw_steps = args.get("steps")
        if not isinstance(raw_steps, list):
            raise SyzygyError("invalid_steps", "steps must be array")

        steps = []
        for raw in raw_steps:
            if not isinstance(raw, dict):
                raise SyzygyError("invalid_steps", "each step must be object")
            steps.append(parse_step(raw, code="invalid_steps"))

        run_id = await self._resolve_run_id(args, unit_id)
        recorded = await self.service.steps_append(unit_id, run_id, steps)
        return {"step_ids": [s.step_id for s in recorded]}

    async def _anchor_set(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        key = require_str(args, "key")
        value = args.get("value")
        if not isinstance(value, str):
            raise SyzygyError("invalid_args", "value is required and must be a string")
        source = optional_str(args, "source")
        run_id = await self._resolve_run_id(args, unit_id)
        await self.service.anchor_set(unit_id, run_id, key, value, source)
        return {"ok": True}

    async def _dbcheck_append(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        raw = args.get("db_check")
        if not isinstance(raw, dict):
            raise SyzygyError("invalid_db_check", "db_check must be object")
        check = parse_db_check(raw)
        run_id = await self._resolve_run_id(args, unit_id)
        recorded = await self.service.db_check_append(unit_id, run_id, check)
        return {"dbcheck_id": recorded.check_id}

    async def _crystallize(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        template = optional_str(args, "template")
        output_dir = optional_str(args, "output_dir")
        run_id = await self._resolve_run_id(args, unit_id)
        paths = await self.service.crystallize(unit_id, run_id, template, output_dir)
        return {"artifact_paths": paths}

    async def _replay(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        command = optional_str(args, "command")
        argv = optional_str_list(args, "args")
        cwd = optional_str(args, "cwd")
        env = optional_object(args, "env")
        run_id = await self._resolve_run_id(args, unit_id)
        return await self.service.replay(unit_id, run_id, command, argv, cwd, env)

    async def _selfcheck(self, args: Mapping[str, Any]) -> dict[str, Any]:
        unit_id = require_str(args, "unit_id")
        run_id = await self._resolve_run_id(args, unit_id)
        report = await self.service.self_check(unit_id, run_id)
        return self_check_report_to_dict(report)
