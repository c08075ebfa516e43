"""Unit service: orchestrates every mutation and query on test units.

Each mutating operation follows the same shape: load the whole unit
from the store, change it in memory, refresh updated_at, and save the
whole unit back. A failed save fails the operation, so callers never
observe a half-applied change. The one exception is replay, whose
outcome has already been produced by the time it is saved.
"""

import logging
import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from .errors import SyzygyError
from .ids import new_id
from .impact import ImpactPlanner
from .models import (
    ActionStep,
    DbCheck,
    ImpactedUnit,
    ProjectConfig,
    Run,
    SelfCheckReport,
    Unit,
)
from .ports import CommandRunnerPort, ExportPort, UnitStorePort
from .selfcheck import SelfCheckEngine

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "spec_json"
DEFAULT_RUNNER_COMMAND = "syzygy-runner"
DEFAULT_REPLAY_COMMAND = "node ./runner-node/bin/syzygy-runner.js"
SPEC_ARTIFACT = "spec"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _stringify(value: Any) -> str:
    """Render an env value as text the way a shell would see it."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _string_entries(mapping: Mapping[str, Any] | None) -> dict[str, str]:
    """Keep only string-valued entries; other values are not exported."""
    return {k: v for k, v in (mapping or {}).items() if isinstance(v, str)}


class UnitService:
    """Core service behind every Syzygy tool.

    Coordinates the unit store, the crystallize exporter and the replay
    command runner. All state changes are logged.
    """

    def __init__(
        self,
        store: UnitStorePort,
        exporter: ExportPort,
        runner: CommandRunnerPort,
        selfcheck: SelfCheckEngine | None = None,
        planner: ImpactPlanner | None = None,
        project_key: str = "default",
        artifacts_dir: str = "./syzygy-artifacts",
        replay_default_command: str = DEFAULT_REPLAY_COMMAND,
        require_project_init: bool = False,
    ):
        """Initialize the unit service.

        Args:
            store: UnitStorePort implementation for persistence.
            exporter: ExportPort implementation used by crystallize.
            runner: CommandRunnerPort implementation used by replay.
            selfcheck: Rule engine for self-checks (default engine if None).
            planner: Impact planner (default planner if None).
            project_key: Project the store is scoped to.
            artifacts_dir: Fallback root for crystallize output.
            replay_default_command: Command line used for replay when
                neither the caller nor the project config supplies one.
            require_project_init: If True, starting a run requires a
                saved project config.
        """
        self.store = store
        self.exporter = exporter
        self.runner = runner
        self.selfcheck = selfcheck or SelfCheckEngine()
        self.planner = planner or ImpactPlanner()
        self.project_key = project_key
        self.artifacts_dir = artifacts_dir
        self.replay_default_command = replay_default_command
        self.require_project_init = require_project_init

    # ------------------------------------------------------------------
    # Project configuration
    # ------------------------------------------------------------------

    async def project_init(
        self,
        project_key: str = "",
        env: Mapping[str, Any] | None = None,
        runner_command: str = "",
        runner_dir: str = "",
    ) -> tuple[ProjectConfig, str]:
        """Create or replace the project configuration.

        Env values are stored as strings. An empty runner command falls
        back to the default runner.

        Returns:
            The saved config and the location it was saved to.
        """
        config = ProjectConfig(
            project_key=project_key.strip() or self.project_key,
            env={k: _stringify(v) for k, v in (env or {}).items()},
            runner_command=runner_command.strip() or DEFAULT_RUNNER_COMMAND,
            runner_dir=runner_dir.strip(),
            updated_at=_utc_now().strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
        location = await self.store.save_project_config(config)

        logger.info(
            f"Project {config.project_key} initialized",
            extra={"project_key": config.project_key, "config_path": location},
        )
        return config, location

    async def ensure_project_initialized(self) -> ProjectConfig:
        """Return the project config.

        Raises:
            SyzygyError: project_not_initialized if none has been saved.
        """
        config = await self.store.get_project_config()
        if config is None:
            raise SyzygyError(
                "project_not_initialized",
                "project config not found; call syzygy_project_init first",
            )
        return config

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_unit(self, unit_id: str) -> Unit:
        """Load a unit.

        Raises:
            SyzygyError: unit_not_found if the unit was never saved.
        """
        unit = await self.store.get_unit(unit_id)
        if unit is None:
            raise SyzygyError("unit_not_found", f"unit not found: {unit_id}")
        return unit

    async def latest_run_id(self, unit_id: str) -> str:
        """Return the ID of the unit's most recent run.

        Raises:
            SyzygyError: unit_not_found, or run_not_found if it has no runs.
        """
        unit = await self.get_unit(unit_id)
        run = unit.latest_run()
        if run is None:
            raise SyzygyError("run_not_found", "run not found")
        return run.run_id

    async def _load_run(self, unit_id: str, run_id: str) -> tuple[Unit, Run]:
        unit = await self.get_unit(unit_id)
        return unit, unit.find_run(run_id)

    async def _commit(self, unit: Unit) -> None:
        unit.touch(_utc_now())
        await self.store.save_unit(unit)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def unit_start(
        self,
        unit_id: str,
        title: str = "",
        env: Mapping[str, Any] | None = None,
        variables: Mapping[str, Any] | None = None,
    ) -> Run:
        """Start a new in-progress run, creating the unit if needed.

        Raises:
            SyzygyError: project_not_initialized when project init is
                required and missing.
            Exception: If the store fails.
        """
        if self.require_project_init:
            await self.ensure_project_initialized()

        unit = await self.store.get_or_create_unit(unit_id, title, env)
        run = Run(
            run_id=new_id("run"),
            started_at=_utc_now(),
            variables=dict(variables or {}),
        )
        unit.add_run(run)
        await self._commit(unit)

        logger.info(
            f"Run {run.run_id} started for unit {unit_id}",
            extra={"unit_id": unit_id, "run_id": run.run_id, "run_count": len(unit.runs)},
        )
        return run

    async def step_append(self, unit_id: str, run_id: str, step: ActionStep) -> ActionStep:
        """Append one step with a freshly generated step_id.

        Raises:
            SyzygyError: unit_not_found or run_not_found.
        """
        steps = await self.steps_append(unit_id, run_id, [step])
        return steps[0]

    async def steps_append(
        self, unit_id: str, run_id: str, steps: Sequence[ActionStep]
    ) -> list[ActionStep]:
        """Append several steps in order under a single save.

        Raises:
            SyzygyError: unit_not_found or run_not_found.
        """
        unit, run = await self._load_run(unit_id, run_id)

        appended = []
        for step in steps:
            recorded = replace(step, step_id=new_id("step"))
            run.append_step(recorded)
            appended.append(recorded)
        await self._commit(unit)

        logger.debug(
            f"Appended {len(appended)} step(s) to run {run_id}",
            extra={"unit_id": unit_id, "run_id": run_id, "step_count": len(run.steps)},
        )
        return appended

    async def anchor_set(
        self, unit_id: str, run_id: str, key: str, value: str, source: str = ""
    ) -> None:
        """Upsert an anchor on a run (last write wins).

        Raises:
            SyzygyError: unit_not_found or run_not_found.
        """
        unit, run = await self._load_run(unit_id, run_id)
        run.set_anchor(key, value, source)
        await self._commit(unit)

        logger.debug(
            f"Anchor {key} set on run {run_id}",
            extra={"unit_id": unit_id, "run_id": run_id, "source": source},
        )

    async def db_check_append(self, unit_id: str, run_id: str, check: DbCheck) -> DbCheck:
        """Append a database assertion with a freshly generated check_id.

        Raises:
            SyzygyError: unit_not_found or run_not_found.
        """
        unit, run = await self._load_run(unit_id, run_id)
        recorded = replace(check, check_id=new_id("db"))
        run.append_db_check(recorded)
        await self._commit(unit)

        logger.debug(
            f"DB check {recorded.check_id} appended to run {run_id}",
            extra={"unit_id": unit_id, "run_id": run_id, "dms": check.dms},
        )
        return recorded

    async def set_unit_meta(self, unit_id: str, meta: Mapping[str, Any]) -> Unit:
        """Merge meta into a unit, creating the unit if needed."""
        unit = await self.store.get_or_create_unit(unit_id)
        unit.merge_meta(meta)
        await self._commit(unit)

        logger.info(
            f"Meta updated for unit {unit_id}",
            extra={"unit_id": unit_id, "keys": sorted(meta)},
        )
        return unit

    async def crystallize(
        self, unit_id: str, run_id: str, template: str = "", output_dir: str = ""
    ) -> dict[str, str]:
        """Export a run to artifacts and record their paths on the run.

        Output goes to output_dir if given, else to
        <artifacts root>/<unit_id>/<run_id>, where the root comes from the
        project config when set and from settings otherwise.

        Raises:
            SyzygyError: unit_not_found, run_not_found or invalid_template.
            OSError: If the artifacts cannot be written.
        """
        unit, run = await self._load_run(unit_id, run_id)

        if not output_dir:
            config = await self.store.get_project_config()
            root = (config.artifacts_dir if config else "") or self.artifacts_dir
            output_dir = os.path.join(root, unit_id, run_id)

        paths = await self.exporter.export(
            unit, run, template or DEFAULT_TEMPLATE, output_dir
        )
        run.record_artifacts(paths)
        await self._commit(unit)

        logger.info(
            f"Run {run_id} crystallized",
            extra={"unit_id": unit_id, "run_id": run_id, "artifacts": sorted(paths)},
        )
        return paths

    async def _default_replay_command(
        self, spec_path: str
    ) -> tuple[str, list[str], str, dict[str, str]]:
        """Resolve command, args, cwd and env for a spec-driven replay."""
        config = await self.store.get_project_config()
        runner_command = config.runner_command if config else ""
        # The placeholder runner stands for "not configured"
        if runner_command == DEFAULT_RUNNER_COMMAND:
            runner_command = ""
        argv = shlex.split(runner_command)
        cwd = (config.runner_dir if config else "") or "./"
        if not argv:
            argv = shlex.split(self.replay_default_command)
        env = dict(config.env) if config else {}
        return argv[0], argv[1:] + [spec_path], cwd, env

    async def replay(
        self,
        unit_id: str,
        run_id: str,
        command: str = "",
        args: Sequence[str] = (),
        cwd: str = "",
        env: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a replay command and record its outcome on the run.

        Without an explicit command, the crystallized spec artifact is
        replayed through the project's runner (or the default runner),
        with SYZYGY_SPEC pointing at the spec.

        Returns:
            The recorded result: ok, output, anchors and, on failure, error.

        Raises:
            SyzygyError: unit_not_found, run_not_found, missing_artifact,
                or environment_error if the command cannot be located.
        """
        unit, run = await self._load_run(unit_id, run_id)

        base_env: dict[str, str] = {}
        call_env = _string_entries(env)
        argv = list(args)
        workdir: str | None = cwd or None

        if not command:
            spec_path = run.artifacts.get(SPEC_ARTIFACT, "")
            if not spec_path:
                raise SyzygyError(
                    "missing_artifact",
                    "spec artifact not found; run syzygy_crystallize first",
                )
            command, argv, default_cwd, base_env = await self._default_replay_command(
                spec_path
            )
            workdir = cwd or default_cwd
            call_env["SYZYGY_SPEC"] = spec_path

        if not self.runner.is_available(command):
            raise SyzygyError(
                "environment_error",
                f"Command validation failed: command '{command}' not found in PATH "
                f"or common locations. This is an environment issue that must be "
                f"resolved before replay can proceed. Please check your PATH and "
                f"command availability.",
            )

        child_env = {**base_env, **_string_entries(unit.env), **call_env}

        logger.info(
            f"Replaying run {run_id} with {command}",
            extra={"unit_id": unit_id, "run_id": run_id, "command": command, "command_args": argv},
        )
        outcome = await self.runner.run(command, argv, workdir, child_env)

        result: dict[str, Any] = {"ok": outcome.ok, "output": outcome.output}
        if not outcome.ok:
            result["error"] = outcome.error or ""
        result["anchors"] = dict(run.anchors)

        now = _utc_now()
        run.record_replay(result, now)
        unit.touch(now)
        try:
            await self.store.save_unit(unit)
        except Exception as e:
            logger.warning(
                f"Failed to save replay result for run {run_id}: {e}",
                exc_info=True,
            )

        if not outcome.ok:
            logger.warning(
                f"Replay of run {run_id} failed: {outcome.error}",
                extra={"unit_id": unit_id, "run_id": run_id},
            )
        return result

    # ------------------------------------------------------------------
    # Read-only evaluation
    # ------------------------------------------------------------------

    async def self_check(self, unit_id: str, run_id: str) -> SelfCheckReport:
        """Evaluate a run against the compliance policy.

        Raises:
            SyzygyError: unit_not_found or run_not_found.
        """
        unit, run = await self._load_run(unit_id, run_id)
        report = self.selfcheck.evaluate(unit, run)

        logger.info(
            f"Self-check for run {run_id}: {'passed' if report.all_passed else 'failed'}",
            extra={"unit_id": unit_id, "run_id": run_id, "failed": list(report.failed_checks)},
        )
        return report

    async def plan_impacted_units(
        self,
        changed_files: Sequence[str] = (),
        changed_apis: Sequence[str] = (),
        changed_tables: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> list[ImpactedUnit]:
        """List units whose touchpoints match a change set.

        Units that cannot be loaded are skipped and logged.
        """
        units = []
        for unit_id in await self.store.list_unit_ids():
            try:
                unit = await self.store.get_unit(unit_id)
            except Exception as e:
                logger.warning(f"Skipping unreadable unit {unit_id}: {e}")
                continue
            if unit is not None:
                units.append(unit)

        impacted = self.planner.plan(
            units, changed_files, changed_apis, changed_tables, tags
        )
        logger.debug(
            f"Planned {len(impacted)} impacted unit(s) out of {len(units)}",
            extra={"impacted": [u.unit_id for u in impacted]},
        )
        return impacted
