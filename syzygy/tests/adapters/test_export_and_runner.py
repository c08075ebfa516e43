"""Integration tests for the spec.json exporter and the subprocess runner."""

import json
import os
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

from syzygy.adapters.export.spec_json import SpecJsonExporter, render_playwright_stub
from syzygy.adapters.runner.process import SubprocessCommandRunner
from syzygy.core.errors import SyzygyError
from syzygy.core.models import ActionStep, DbCheck, Run, Unit, new_unit

T0 = datetime(2024, 5, 1, 9, 0, 0, tzinfo=UTC)


@pytest.fixture
def recorded() -> tuple[Unit, Run]:
    unit = new_unit("checkout", T0, title="Checkout", env={"BASE_URL": "http://shop"})
    run = Run(run_id="run_1", started_at=T0, variables={"qty": 2})
    run.append_step(ActionStep(name="open", ui={"goto": "/cart"}, step_id="step_1"))
    run.append_db_check(
        DbCheck(dms="mysql", sql="select 1", params={"id": "7"}, assertion={"rows": 1}, check_id="db_1")
    )
    run.set_anchor("order_id", "A1", "ui")
    unit.add_run(run)
    return unit, run


@pytest.mark.asyncio
class TestSpecJsonExporter:
    async def test_writes_spec_and_stub(
        self, recorded: tuple[Unit, Run], tmp_path: Path
    ) -> None:
        unit, run = recorded
        out = tmp_path / "artifacts" / "checkout" / "run_1"

        paths = await SpecJsonExporter().export(unit, run, "spec_json", str(out))

        assert paths == {
            "spec": str(out / "spec.json"),
            "playwright_ts": str(out / "e2e.spec.ts"),
        }
        spec = json.loads((out / "spec.json").read_text())
        assert spec["unit_id"] == "checkout"
        assert spec["run_id"] == "run_1"
        assert spec["steps"] == [{"step_id": "step_1", "name": "open", "ui": {"goto": "/cart"}}]
        assert spec["db_checks"][0]["assert"] == {"rows": 1}
        assert spec["anchors"] == {"order_id": "A1"}
        assert spec["variables"] == {"qty": 2}
        assert spec["env"] == {"BASE_URL": "http://shop"}
        assert "@playwright/test" in (out / "e2e.spec.ts").read_text()

    async def test_unknown_template(self, recorded: tuple[Unit, Run], tmp_path: Path) -> None:
        with pytest.raises(SyzygyError) as exc_info:
            await SpecJsonExporter().export(*recorded, "cypress", str(tmp_path))
        assert exc_info.value.code == "invalid_template"
        assert list(tmp_path.iterdir()) == []


class TestPlaywrightStub:
    def test_stub_escapes_unit_id(self) -> None:
        stub = render_playwright_stub("it's \"quoted\"")
        assert 'test("SYZYGY unit it\'s \\"quoted\\"", async' in stub


class TestCommandAvailability:
    def test_python_is_available(self) -> None:
        assert SubprocessCommandRunner().is_available(sys.executable)

    def test_missing_command(self) -> None:
        assert not SubprocessCommandRunner(search_dirs=()).is_available("syzygy-no-such-tool")
        assert not SubprocessCommandRunner().is_available("")

    def test_found_in_search_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "hidden-tool").write_text("")
        monkeypatch.setenv("PATH", "")
        assert SubprocessCommandRunner(search_dirs=(str(tmp_path),)).is_available("hidden-tool")

    def test_missing_absolute_path(self, tmp_path: Path) -> None:
        runner = SubprocessCommandRunner(search_dirs=(str(tmp_path),))
        assert not runner.is_available(str(tmp_path / "nope"))


@pytest.mark.asyncio
class TestSubprocessCommandRunner:
    async def test_combined_output_and_env(self, tmp_path: Path) -> None:
        script = (
            "import os, sys; "
            "print(os.environ['SYZYGY_SPEC']); "
            "print('warn', file=sys.stderr); "
            "print(os.getcwd())"
        )
        result = await SubprocessCommandRunner().run(
            sys.executable, ["-u", "-c", script], str(tmp_path), {"SYZYGY_SPEC": "/x/spec.json"}
        )

        assert result.ok
        assert result.error is None
        lines = result.output.splitlines()
        assert lines[0] == "/x/spec.json"
        assert "warn" in lines
        assert os.path.realpath(lines[-1]) == os.path.realpath(tmp_path)

    async def test_non_zero_exit(self) -> None:
        result = await SubprocessCommandRunner().run(
            sys.executable, ["-c", "import sys; print('bad'); sys.exit(3)"], None, {}
        )
        assert not result.ok
        assert result.error == "exit status 3"
        assert result.output.strip() == "bad"

    async def test_launch_failure(self, tmp_path: Path) -> None:
        result = await SubprocessCommandRunner().run(str(tmp_path / "missing"), [], None, {})
        assert not result.ok
        assert result.output == ""
        assert result.error
