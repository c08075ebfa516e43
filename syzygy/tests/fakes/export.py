"""Fake ExportPort implementation for testing."""

import os

from syzygy.core.errors import SyzygyError
from syzygy.core.models import Run, Unit
from syzygy.core.ports import ExportPort


class FakeExportPort(ExportPort):
    """Records export calls and returns predictable artifact paths.

    Nothing is written to disk.
    """

    def __init__(self):
        self.exports: list[tuple[str, str, str, str]] = []

    async def export(
        self, unit: Unit, run: Run, template: str, output_dir: str
    ) -> dict[str, str]:
        if template != "spec_json":
            raise SyzygyError("invalid_template", f"unsupported template: {template}")
        self.exports.append((unit.unit_id, run.run_id, template, output_dir))
        return {
            "spec": os.path.join(output_dir, "spec.json"),
            "playwright_ts": os.path.join(output_dir, "e2e.spec.ts"),
        }
