"""Unit tests for UnitService.

All ports are in-memory fakes; each test reads state back through the
fake store so that only persisted changes are observed.
"""

import pytest

from syzygy.core.errors import SyzygyError
from syzygy.core.models import ActionStep, CommandResult, DbCheck
from syzygy.core.unit_service import UnitService
from syzygy.tests.fakes import (
    FakeCommandRunnerPort,
    FakeExportPort,
    FakeUnitStorePort,
)

# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def store() -> FakeUnitStorePort:
    return FakeUnitStorePort()


@pytest.fixture
def exporter() -> FakeExportPort:
    return FakeExportPort()


@pytest.fixture
def runner() -> FakeCommandRunnerPort:
    return FakeCommandRunnerPort()


@pytest.fixture
def service(
    store: FakeUnitStorePort, exporter: FakeExportPort, runner: FakeCommandRunnerPort
) -> UnitService:
    return UnitService(
        store=store,
        exporter=exporter,
        runner=runner,
        artifacts_dir="/artifacts",
    )


async def _started(service: UnitService, unit_id: str = "checkout") -> str:
    run = await service.unit_start(unit_id, title="Checkout", env={"BASE_URL": "http://shop"})
    return run.run_id


# ============================================================================
# Unit and run lifecycle
# ============================================================================


@pytest.mark.asyncio
class TestUnitStart:
    async def test_creates_unit_and_run(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        run = await service.unit_start("checkout", title="Checkout", variables={"qty": 2})

        unit = await store.get_unit("checkout")
        assert unit is not None
        assert unit.title == "Checkout"
        assert [r.run_id for r in unit.runs] == [run.run_id]
        assert unit.runs[0].status == "in_progress"
        assert unit.runs[0].variables == {"qty": 2}
        assert run.run_id.startswith("run_")

    async def test_two_starts_two_runs(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        first = await _started(service)
        second = await _started(service)

        unit = await store.get_unit("checkout")
        assert first != second
        assert [r.run_id for r in unit.runs] == [first, second]
        assert unit.updated_at >= unit.created_at

    async def test_empty_title_keeps_existing(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        await _started(service)
        await service.unit_start("checkout")

        unit = await store.get_unit("checkout")
        assert unit.title == "Checkout"
        assert unit.env == {"BASE_URL": "http://shop"}

    async def test_requires_project_init_when_configured(
        self, store: FakeUnitStorePort, exporter: FakeExportPort, runner: FakeCommandRunnerPort
    ) -> None:
        strict = UnitService(store, exporter, runner, require_project_init=True)

        with pytest.raises(SyzygyError) as exc_info:
            await strict.unit_start("checkout")
        assert exc_info.value.code == "project_not_initialized"
        assert store.documents == {}

        await strict.project_init()
        await strict.unit_start("checkout")
        assert "checkout" in store.documents

    async def test_failed_save_propagates(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        store.save_error = OSError("disk full")
        with pytest.raises(OSError, match="disk full"):
            await service.unit_start("checkout")
        assert await store.get_unit("checkout") is None


@pytest.mark.asyncio
class TestRecording:
    """Tests for steps, anchors, db checks and meta."""

    async def test_steps_keep_call_order(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        run_id = await _started(service)
        ids = [
            (await service.step_append("checkout", run_id, ActionStep(name=f"s{i}"))).step_id
            for i in range(5)
        ]

        run = (await store.get_unit("checkout")).find_run(run_id)
        assert [s.name for s in run.steps] == ["s0", "s1", "s2", "s3", "s4"]
        assert [s.step_id for s in run.steps] == ids
        assert len(set(ids)) == 5

    async def test_batch_appends_under_one_save(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        run_id = await _started(service)
        saves_before = len(store.saved_units)

        recorded = await service.steps_append(
            "checkout", run_id, [ActionStep(name="a"), ActionStep(name="b", ui={"click": "#b"})]
        )

        assert len(store.saved_units) == saves_before + 1
        run = (await store.get_unit("checkout")).find_run(run_id)
        assert [s.step_id for s in run.steps] == [s.step_id for s in recorded]
        assert run.steps[1].ui == {"click": "#b"}

    async def test_step_for_unknown_run(self, service: UnitService) -> None:
        await _started(service)
        with pytest.raises(SyzygyError) as exc_info:
            await service.step_append("checkout", "run_nope", ActionStep(name="x"))
        assert exc_info.value.code == "run_not_found"

    async def test_step_for_unknown_unit(self, service: UnitService) -> None:
        with pytest.raises(SyzygyError) as exc_info:
            await service.step_append("ghost", "run_1", ActionStep(name="x"))
        assert exc_info.value.code == "unit_not_found"

    async def test_anchor_overwrite(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        run_id = await _started(service)
        await service.anchor_set("checkout", run_id, "order_id", "A1", "ui")
        await service.anchor_set("checkout", run_id, "order_id", "A2")

        run = (await store.get_unit("checkout")).find_run(run_id)
        assert run.anchors == {"order_id": "A2"}
        assert run.meta["last_anchor_source"] == ""

    async def test_db_check_gets_id(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        run_id = await _started(service)
        recorded = await service.db_check_append(
            "checkout", run_id, DbCheck(dms="mysql", sql="select 1", assertion={"rows": 1})
        )

        assert recorded.check_id.startswith("db_")
        run = (await store.get_unit("checkout")).find_run(run_id)
        assert run.db_checks == [recorded]

    async def test_meta_creates_unit_and_merges(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        await service.set_unit_meta("fresh", {"tags": ["smoke"]})
        await service.set_unit_meta("fresh", {"owner": "qa"})

        unit = await store.get_unit("fresh")
        assert unit.meta == {"tags": ["smoke"], "owner": "qa"}
        assert unit.runs == []

    async def test_latest_run_id(self, service: UnitService) -> None:
        await _started(service)
        second = await _started(service)
        assert await service.latest_run_id("checkout") == second

    async def test_latest_run_id_without_runs(self, service: UnitService) -> None:
        await service.set_unit_meta("meta-only", {"a": 1})
        with pytest.raises(SyzygyError) as exc_info:
            await service.latest_run_id("meta-only")
        assert exc_info.value.code == "run_not_found"


# ============================================================================
# Crystallize and replay
# ============================================================================


@pytest.mark.asyncio
class TestCrystallize:
    async def test_default_output_dir(
        self, service: UnitService, store: FakeUnitStorePort, exporter: FakeExportPort
    ) -> None:
        run_id = await _started(service)

        paths = await service.crystallize("checkout", run_id)

        assert exporter.exports == [
            ("checkout", run_id, "spec_json", f"/artifacts/checkout/{run_id}")
        ]
        run = (await store.get_unit("checkout")).find_run(run_id)
        assert run.artifacts == paths
        assert paths["spec"] == f"/artifacts/checkout/{run_id}/spec.json"

    async def test_project_artifacts_dir_wins(
        self, service: UnitService, store: FakeUnitStorePort, exporter: FakeExportPort
    ) -> None:
        run_id = await _started(service)
        store.configs["default"] = {"project_key": "default", "artifacts_dir": "/proj"}

        await service.crystallize("checkout", run_id)

        assert exporter.exports[0][3] == f"/proj/checkout/{run_id}"

    async def test_explicit_output_dir(
        self, service: UnitService, exporter: FakeExportPort
    ) -> None:
        run_id = await _started(service)
        await service.crystallize("checkout", run_id, output_dir="/out")
        assert exporter.exports[0][3] == "/out"

    async def test_unknown_template(self, service: UnitService) -> None:
        run_id = await _started(service)
        with pytest.raises(SyzygyError) as exc_info:
            await service.crystallize("checkout", run_id, template="cypress")
        assert exc_info.value.code == "invalid_template"


@pytest.mark.asyncio
class TestReplay:
    async def test_requires_spec_without_command(self, service: UnitService) -> None:
        run_id = await _started(service)
        with pytest.raises(SyzygyError) as exc_info:
            await service.replay("checkout", run_id)
        assert exc_info.value.code == "missing_artifact"

    async def test_default_runner_with_spec(
        self, service: UnitService, runner: FakeCommandRunnerPort
    ) -> None:
        run_id = await _started(service)
        paths = await service.crystallize("checkout", run_id)

        result = await service.replay("checkout", run_id)

        call = runner.calls[0]
        assert call["command"] == "node"
        assert call["args"] == ["./runner-node/bin/syzygy-runner.js", paths["spec"]]
        assert call["cwd"] == "./"
        assert call["env"]["SYZYGY_SPEC"] == paths["spec"]
        assert call["env"]["BASE_URL"] == "http://shop"
        assert result == {"ok": True, "output": "replayed\n", "anchors": {}}

    async def test_project_runner_and_env(
        self, service: UnitService, runner: FakeCommandRunnerPort
    ) -> None:
        await service.project_init(
            env={"DB_PORT": 3306, "BASE_URL": "http://proj", "DEBUG": True},
            runner_command="npx syzygy-runner --headless",
            runner_dir="/work",
        )
        run_id = await _started(service)
        paths = await service.crystallize("checkout", run_id)

        await service.replay("checkout", run_id)

        call = runner.calls[0]
        assert call["command"] == "npx"
        assert call["args"] == ["syzygy-runner", "--headless", paths["spec"]]
        assert call["cwd"] == "/work"
        assert call["env"]["DB_PORT"] == "3306"
        assert call["env"]["DEBUG"] == "true"
        # Unit env overrides project env
        assert call["env"]["BASE_URL"] == "http://shop"

    async def test_project_without_runner_uses_default_replay_command(
        self, service: UnitService, runner: FakeCommandRunnerPort
    ) -> None:
        await service.project_init(env={"DB_PORT": "3306"})
        run_id = await _started(service)
        paths = await service.crystallize("checkout", run_id)

        await service.replay("checkout", run_id)

        call = runner.calls[0]
        assert call["command"] == "node"
        assert call["args"] == ["./runner-node/bin/syzygy-runner.js", paths["spec"]]
        assert call["cwd"] == "./"
        assert call["env"]["DB_PORT"] == "3306"

    async def test_explicit_command_and_call_env(
        self, service: UnitService, runner: FakeCommandRunnerPort
    ) -> None:
        run_id = await _started(service)

        await service.replay(
            "checkout",
            run_id,
            command="pytest",
            args=["-q"],
            cwd="/repo",
            env={"BASE_URL": "http://call", "RETRIES": 3},
        )

        call = runner.calls[0]
        assert call["command"] == "pytest"
        assert call["args"] == ["-q"]
        assert call["cwd"] == "/repo"
        assert call["env"] == {"BASE_URL": "http://call"}

    async def test_unavailable_command(
        self, service: UnitService, runner: FakeCommandRunnerPort
    ) -> None:
        runner.available = False
        run_id = await _started(service)

        with pytest.raises(SyzygyError) as exc_info:
            await service.replay("checkout", run_id, command="nope")

        assert exc_info.value.code == "environment_error"
        assert "'nope' not found" in exc_info.value.message
        assert runner.calls == []

    async def test_failure_is_recorded(
        self, service: UnitService, store: FakeUnitStorePort, runner: FakeCommandRunnerPort
    ) -> None:
        runner.result = CommandResult(ok=False, output="boom\n", error="exit status 2")
        run_id = await _started(service)
        await service.anchor_set("checkout", run_id, "order_id", "A1")

        result = await service.replay("checkout", run_id, command="sh")

        assert result == {
            "ok": False,
            "output": "boom\n",
            "error": "exit status 2",
            "anchors": {"order_id": "A1"},
        }
        run = (await store.get_unit("checkout")).find_run(run_id)
        assert run.meta["replay_result"] == result
        assert "replay_executed_at" in run.meta

    async def test_save_failure_does_not_fail_replay(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        run_id = await _started(service)
        store.save_error = OSError("read-only")

        result = await service.replay("checkout", run_id, command="sh")

        assert result["ok"] is True


# ============================================================================
# Self-check, project init and impact planning
# ============================================================================


@pytest.mark.asyncio
class TestQueries:
    async def test_self_check_full_flow_passes(self, service: UnitService) -> None:
        run_id = await _started(service)
        await service.step_append("checkout", run_id, ActionStep(name="buy", net={"url": "/api"}))
        await service.crystallize("checkout", run_id)
        await service.replay("checkout", run_id)

        report = await service.self_check("checkout", run_id)

        assert report.all_passed, report.summary

    async def test_self_check_unknown_run(self, service: UnitService) -> None:
        await _started(service)
        with pytest.raises(SyzygyError) as exc_info:
            await service.self_check("checkout", "run_missing")
        assert exc_info.value.code == "run_not_found"

    async def test_project_init_defaults(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        config, location = await service.project_init(env={"FLAG": None})

        assert config.project_key == "default"
        assert config.runner_command == "syzygy-runner"
        assert config.env == {"FLAG": ""}
        assert config.updated_at.endswith("Z")
        assert location.endswith("/default/config.json")
        assert (await store.get_project_config()) == config

    async def test_plan_skips_unreadable_units(
        self, service: UnitService, store: FakeUnitStorePort
    ) -> None:
        await service.set_unit_meta("checkout", {"touchpoints": {"db_tables": ["orders"]}})
        store.corrupt_ids.add("broken")

        impacted = await service.plan_impacted_units(changed_tables=["orders"])

        assert [u.unit_id for u in impacted] == ["checkout"]
