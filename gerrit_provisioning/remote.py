"""
Container command execution.

Every command sent into a Gerrit container goes through ContainerExec as an
argument vector. Nothing is ever assembled into a shell string, so values such
as usernames or key material are passed to the remote process verbatim.
"""

import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import logging

logger = logging.getLogger(__name__)


class RemoteCommandError(Exception):
    """Raised when a command inside the container exits non-zero"""

    def __init__(self, message: str, result: Optional["CommandResult"] = None):
        super().__init__(message)
        self.result = result


@dataclass
class CommandResult:
    """Captured outcome of a single container command."""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class ContainerExec:
    """Runs commands inside one container via `docker exec`."""
    container_id: str
    docker_binary: str = "docker"
    timeout: float = 120.0
    default_env: Dict[str, str] = field(default_factory=dict)

    def build_command(
        self,
        args: Sequence[str],
        interactive: bool = False,
        env: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
    ) -> List[str]:
        command = [self.docker_binary, "exec"]
        if interactive:
            command.append("-i")
        for key, value in {**self.default_env, **(env or {})}.items():
            command.extend(["-e", f"{key}={value}"])
        if workdir:
            command.extend(["-w", workdir])
        command.append(self.container_id)
        command.extend(str(arg) for arg in args)
        return command

    def run(
        self,
        args: Sequence[str],
        input: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
        check: bool = False,
    ) -> CommandResult:
        """
        Execute a command in the container.

        Args:
            args: Command and arguments, passed through without a shell
            input: Optional text written to the command's stdin
            env: Extra environment variables for this command
            workdir: Working directory inside the container
            check: Raise RemoteCommandError on a non-zero exit code

        Returns:
            CommandResult with captured stdout/stderr
        """
        command = self.build_command(args, interactive=input is not None, env=env, workdir=workdir)
        logger.debug(f"[{self.container_id}] {' '.join(str(a) for a in args)}")

        try:
            completed = subprocess.run(
                command,
                input=input,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
            result = CommandResult(
                args=list(args),
                returncode=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
            )
        except subprocess.TimeoutExpired:
            result = CommandResult(
                args=list(args),
                returncode=124,
                stderr=f"Command timed out after {self.timeout}s",
            )
        except OSError as e:
            result = CommandResult(args=list(args), returncode=127, stderr=str(e))

        if not result.ok:
            logger.debug(f"[{self.container_id}] exit {result.returncode}: {result.stderr.strip()}")
            if check:
                raise RemoteCommandError(
                    f"'{' '.join(result.args)}' failed with exit code {result.returncode}: "
                    f"{result.stderr.strip()}",
                    result,
                )
        return result

    def file_exists(self, path: str) -> bool:
        return self.run(["test", "-f", path]).ok

    def read_file(self, path: str) -> Optional[str]:
        """Return the file content, or None if it cannot be read."""
        result = self.run(["cat", path])
        return result.stdout if result.ok else None

    def write_file(self, path: str, content: str) -> None:
        # tee echoes the content back on stdout; it is discarded
        self.run(["tee", path], input=content, check=True)

    def make_dirs(self, path: str) -> None:
        self.run(["mkdir", "-p", path], check=True)

    def remove_tree(self, path: str) -> bool:
        return self.run(["rm", "-rf", path]).ok
