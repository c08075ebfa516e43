"""Impact planning: which units should be replayed after a change.

Units declare what they touch in their meta:

    {"tags": ["checkout", "smoke"],
     "touchpoints": {"files": [...], "api": [...], "db_tables": [...]}}

A changed item matches a unit when the item contains one of the unit's
touchpoints as a substring, so a touchpoint of "orders" matches a
changed table "orders_archive" and a touchpoint of "src/cart/" matches
any file beneath it.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from .models import ImpactedUnit, Unit


def _strings(value: Any) -> list[str]:
    """Keep only string entries of a list; anything else yields []."""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _matches_any(haystack: str, needles: Iterable[str]) -> bool:
    return any(needle and needle in haystack for needle in needles)


class ImpactPlanner:
    """Matches a change set against unit touchpoints.

    Pure decision logic with no side effects.
    """

    def reasons_for(
        self,
        unit: Unit,
        changed_files: Sequence[str] = (),
        changed_apis: Sequence[str] = (),
        changed_tables: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> list[str]:
        """Explain why a unit is impacted; empty list means it is not.

        Only the first matching file, API and table each contribute a
        reason.
        """
        touch = unit.meta.get("touchpoints")
        if not isinstance(touch, dict):
            touch = {}

        reasons: list[str] = []
        for prefix, changed, declared in (
            ("file", changed_files, _strings(touch.get("files"))),
            ("api", changed_apis, _strings(touch.get("api"))),
            ("table", changed_tables, _strings(touch.get("db_tables"))),
        ):
            for item in changed:
                if _matches_any(item, declared):
                    reasons.append(f"{prefix}:{item}")
                    break

        if tags:
            unit_tags = ",".join(_strings(unit.meta.get("tags")))
            if _matches_any(unit_tags, tags):
                reasons.append("tag")

        return reasons

    def plan(
        self,
        units: Iterable[Unit],
        changed_files: Sequence[str] = (),
        changed_apis: Sequence[str] = (),
        changed_tables: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> list[ImpactedUnit]:
        """Return every impacted unit, in input order."""
        impacted = []
        for unit in units:
            reasons = self.reasons_for(
                unit, changed_files, changed_apis, changed_tables, tags
            )
            if reasons:
                impacted.append(
                    ImpactedUnit(
                        unit_id=unit.unit_id,
                        title=unit.title,
                        reasons=tuple(reasons),
                    )
                )
        return impacted
