"""spec.json exporter.

Implements ExportPort by writing a run to a directory:

    <output_dir>/spec.json      steps, anchors, db checks, variables, env
    <output_dir>/e2e.spec.ts    minimal Playwright test stub

The spec document is what the replay runner consumes.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from syzygy.core.errors import SyzygyError
from syzygy.core.models import Run, Unit
from syzygy.core.ports import ExportPort
from syzygy.core.serialization import db_check_to_dict, step_to_dict, to_plain

logger = logging.getLogger(__name__)

SPEC_JSON_TEMPLATE = "spec_json"
SUPPORTED_TEMPLATES = frozenset({SPEC_JSON_TEMPLATE})


def build_spec_document(unit: Unit, run: Run) -> dict[str, Any]:
    """Build the replayable spec document for a run."""
    return {
        "unit_id": unit.unit_id,
        "run_id": run.run_id,
        "steps": [step_to_dict(s) for s in run.steps],
        "anchors": dict(run.anchors),
        "db_checks": [db_check_to_dict(c) for c in run.db_checks],
        "variables": to_plain(run.variables),
        "env": to_plain(unit.env),
    }


def render_playwright_stub(unit_id: str) -> str:
    # json.dumps gives a correctly escaped JS string literal
    title = json.dumps(f"SYZYGY unit {unit_id}")
    return (
        "import { test, expect } from '@playwright/test'\n"
        "\n"
        f"test({title}, async ({{ page }}) => {{\n"
        "  // Load spec.json and execute its steps through the syzygy runner.\n"
        "  await page.goto(process.env.BASE_URL || 'http://localhost');\n"
        "  await expect(page).toBeTruthy();\n"
        "});\n"
    )


class SpecJsonExporter(ExportPort):
    """Writes spec.json plus a Playwright stub for a run."""

    async def export(
        self, unit: Unit, run: Run, template: str, output_dir: str
    ) -> dict[str, str]:
        """Write the artifacts and return their paths by kind.

        Raises:
            SyzygyError: invalid_template for anything but "spec_json".
            OSError: If the directory or spec.json cannot be written.
        """
        if template not in SUPPORTED_TEMPLATES:
            raise SyzygyError(
                "invalid_template",
                f"unsupported template: {template} (supported: {SPEC_JSON_TEMPLATE})",
            )

        out = Path(output_dir).expanduser()
        spec_path = out / "spec.json"
        stub_path = out / "e2e.spec.ts"
        spec = build_spec_document(unit, run)

        def _write() -> None:
            out.mkdir(parents=True, exist_ok=True)
            spec_path.write_text(
                json.dumps(spec, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
            stub_path.write_text(render_playwright_stub(unit.unit_id), encoding="utf-8")

        await asyncio.to_thread(_write)

        logger.debug(
            f"Wrote spec for run {run.run_id} to {spec_path}",
            extra={"unit_id": unit.unit_id, "run_id": run.run_id},
        )
        return {"spec": str(spec_path), "playwright_ts": str(stub_path)}
