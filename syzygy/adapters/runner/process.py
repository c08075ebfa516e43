"""Subprocess command runner.

Implements CommandRunnerPort with subprocess.run executed in the default
executor, so the event loop stays free while a replay command runs.
Output is stdout and stderr combined, in the order the child wrote it.
No timeout is applied; a hung command blocks the replay.
"""

import asyncio
import logging
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence

from syzygy.core.models import CommandResult
from syzygy.core.ports import CommandRunnerPort

logger = logging.getLogger(__name__)

COMMON_BIN_DIRS = ("/bin", "/usr/bin", "/usr/local/bin", "/opt/homebrew/bin")


class SubprocessCommandRunner(CommandRunnerPort):
    """Runs replay commands as child processes."""

    def __init__(self, search_dirs: Sequence[str] = COMMON_BIN_DIRS):
        """Initialize the runner.

        Args:
            search_dirs: Directories probed when a bare command name is
                not on PATH.
        """
        self.search_dirs = tuple(search_dirs)

    def is_available(self, command: str) -> bool:
        """Check PATH, then the common bin directories for bare names."""
        if not command:
            return False
        if shutil.which(command) is not None:
            return True
        if "/" in command:
            return False

        for directory in self.search_dirs:
            candidate = os.path.join(directory, command)
            if os.path.exists(candidate):
                logger.info(
                    f"Found command {command} at {candidate}, but PATH may be incomplete"
                )
                return True
        return False

    async def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: str | None,
        env: Mapping[str, str],
    ) -> CommandResult:
        loop = asyncio.get_running_loop()
        argv = [command, *args]
        child_env = {**os.environ, **env}

        def _run_command() -> CommandResult:
            """Synchronous wrapper for subprocess call."""
            try:
                completed = subprocess.run(
                    argv,
                    cwd=cwd or None,
                    env=child_env,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    errors="replace",
                )
            except OSError as e:
                return CommandResult(ok=False, output="", error=str(e))

            if completed.returncode != 0:
                return CommandResult(
                    ok=False,
                    output=completed.stdout,
                    error=f"exit status {completed.returncode}",
                )
            return CommandResult(ok=True, output=completed.stdout)

        result = await loop.run_in_executor(None, _run_command)
        if not result.ok:
            logger.warning(f"Command {command} failed: {result.error}")
        return result
