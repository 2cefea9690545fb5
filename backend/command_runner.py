"""
Command Runner
Executes system commands, optionally through a privilege helper, with a timeout
"""

import shlex
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from errors import CommandTimedOut

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured outcome of one command"""
    command: List[str]
    returncode: int
    stdout: str
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs commands with subprocess and waits for them to exit"""

    def __init__(self, privilege_command: Optional[str] = '/usr/bin/sudo', timeout: float = 120):
        """
        Args:
            privilege_command: Helper prefixed to privileged commands, None to run them directly
            timeout: Seconds to wait for each command
        """
        self.privilege_command = privilege_command
        self.timeout = timeout

    def run(self, command: List[str], privileged: bool = False, timeout: float = None) -> CommandResult:
        """
        Run a command and capture its output

        Raises:
            CommandTimedOut: If the command does not exit in time
            FileNotFoundError: If the executable does not exist
        """
        argv = list(command)
        if privileged and self.privilege_command:
            argv = [self.privilege_command] + argv
        timeout = timeout if timeout is not None else self.timeout
        printable = ' '.join(shlex.quote(part) for part in argv)

        logger.debug(f"Running command: {printable}")
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {timeout}s: {printable}")
            raise CommandTimedOut(printable, timeout)
        except FileNotFoundError as e:
            logger.error(f"Command not found: {e.filename}")
            raise

        if result.returncode != 0:
            logger.warning(f"Command exited with {result.returncode}: {printable} - {result.stderr.strip()}")
        else:
            logger.debug(f"Command finished: {printable}")

        return CommandResult(argv, result.returncode, result.stdout, result.stderr)
