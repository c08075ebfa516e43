"""Fake CommandRunnerPort implementation for testing."""

from collections.abc import Mapping, Sequence

from syzygy.core.models import CommandResult
from syzygy.core.ports import CommandRunnerPort


class FakeCommandRunnerPort(CommandRunnerPort):
    """Returns a canned result and captures every invocation."""

    def __init__(
        self,
        result: CommandResult | None = None,
        available: bool = True,
    ):
        self.result = result or CommandResult(ok=True, output="replayed\n")
        self.available = available
        self.availability_checks: list[str] = []
        self.calls: list[dict] = []

    def is_available(self, command: str) -> bool:
        self.availability_checks.append(command)
        return self.available

    async def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: str | None,
        env: Mapping[str, str],
    ) -> CommandResult:
        self.calls.append(
            {"command": command, "args": list(args), "cwd": cwd, "env": dict(env)}
        )
        return self.result
