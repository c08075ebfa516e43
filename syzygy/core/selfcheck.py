"""Compliance rules evaluated over a recorded run.

This module implements the fixed policy a finished run must satisfy:
status set, crystallized, replayed successfully, aligned across the
UI/network/database layers, and delivered under a titled unit.
Performance evidence is advisory only.
"""

from collections.abc import Mapping

from .models import Run, SelfCheckItem, SelfCheckReport, Unit

CATEGORY_DEVELOPMENT = "development"
CATEGORY_COMPLETION = "completion"

PERFORMANCE_STEP_MARKERS = ("timeout", "performance", "wait")

# Advisory checks are reported but never fail the aggregate.
ADVISORY_CHECKS = frozenset({"performance_recorded"})


class SelfCheckEngine:
    """Evaluates a run against the compliance policy.

    Pure decision logic with no side effects. Every rule is evaluated; there
    is no short-circuiting, so the report always lists all checks.
    """

    def evaluate(self, unit: Unit, run: Run) -> SelfCheckReport:
        """Run every rule and aggregate the outcome."""
        checks = (
            self.check_run_status(run),
            self.check_crystallized(run),
            self.check_replay(run),
            self.check_layer_alignment(run),
            self.check_performance(run),
            self.check_delivery_format(unit),
        )

        failed = [
            c.name for c in checks if not c.passed and c.name not in ADVISORY_CHECKS
        ]
        all_passed = not failed
        if all_passed:
            summary = "SYZYGY SELFCHECK PASSED - All checks completed successfully"
        else:
            summary = "SYZYGY SELFCHECK FAILED - Failed checks: " + ", ".join(failed)

        return SelfCheckReport(
            unit_id=unit.unit_id,
            run_id=run.run_id,
            all_passed=all_passed,
            checks=checks,
            summary=summary,
        )

    @staticmethod
    def check_run_status(run: Run) -> SelfCheckItem:
        passed = bool(run.status)
        return SelfCheckItem(
            name="run_status",
            category=CATEGORY_DEVELOPMENT,
            passed=passed,
            message="Run status is set" if passed else "Run status is empty",
            details={"status": run.status},
        )

    @staticmethod
    def check_crystallized(run: Run) -> SelfCheckItem:
        passed = bool(run.artifacts)
        return SelfCheckItem(
            name="crystallize_completed",
            category=CATEGORY_COMPLETION,
            passed=passed,
            message=(
                "Crystallize has been executed"
                if passed
                else "syzygy_crystallize not executed - no artifacts found"
            ),
            details={"artifacts": sorted(run.artifacts)},
        )

    @staticmethod
    def check_replay(run: Run) -> SelfCheckItem:
        """Replay must have run; a recorded ok=false fails the check.

        A result that is not a mapping, or has no boolean ok field, counts
        as executed.
        """
        if "replay_result" not in run.meta:
            return SelfCheckItem(
                name="replay_verified",
                category=CATEGORY_COMPLETION,
                passed=False,
                message="syzygy_replay not executed - no replay result found",
                details={"executed": False},
            )

        result = run.meta["replay_result"]
        message = "Replay verification has been executed"
        passed = True
        if isinstance(result, Mapping) and "ok" in result:
            ok = result["ok"]
            if ok is False:
                error = result.get("error")
                passed = False
                message = "syzygy_replay returned ok=false: " + (
                    error if isinstance(error, str) else ""
                )
            else:
                message = "Replay verification successful"

        return SelfCheckItem(
            name="replay_verified",
            category=CATEGORY_COMPLETION,
            passed=passed,
            message=message,
            details={
                "executed": True,
                "executed_at": run.meta.get("replay_executed_at"),
            },
        )

    @staticmethod
    def check_layer_alignment(run: Run) -> SelfCheckItem:
        """At least one of the UI, network or database layers is exercised.

        Recorded db checks count as database coverage.
        """
        has_ui = any(step.ui for step in run.steps)
        has_net = any(step.net for step in run.steps)
        has_db = any(step.db for step in run.steps) or bool(run.db_checks)
        passed = has_ui or has_net or has_db
        return SelfCheckItem(
            name="three_layer_alignment",
            category=CATEGORY_COMPLETION,
            passed=passed,
            message=(
                "Three-layer alignment check"
                if passed
                else "No UI/Net/DB steps found - three-layer alignment not achieved"
            ),
            details={"ui": has_ui, "net": has_net, "db": has_db},
        )

    @staticmethod
    def check_performance(run: Run) -> SelfCheckItem:
        has_record = run.meta.get("performance") is not None or any(
            marker in step.name
            for step in run.steps
            for marker in PERFORMANCE_STEP_MARKERS
        )
        return SelfCheckItem(
            name="performance_recorded",
            category=CATEGORY_COMPLETION,
            passed=True,
            message=(
                "Performance record check (optional)"
                if has_record
                else "Warning: no performance record found (optional but recommended)"
            ),
            details={"has_performance_record": has_record},
        )

    @staticmethod
    def check_delivery_format(unit: Unit) -> SelfCheckItem:
        passed = bool(unit.title)
        return SelfCheckItem(
            name="delivery_format",
            category=CATEGORY_COMPLETION,
            passed=passed,
            message=(
                "Delivery format check"
                if passed
                else "Unit title is empty - delivery format incomplete"
            ),
            details={"title": unit.title},
        )


def evaluate_run(unit: Unit, run: Run) -> SelfCheckReport:
    """Evaluate a run with the default engine."""
    return SelfCheckEngine().evaluate(unit, run)
