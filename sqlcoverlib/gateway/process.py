import abc
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Optional, Sequence, Union

from sqlcoverlib.errors import WorkloadError

log = logging.getLogger(__name__)

Arguments = Union[str, Sequence[str], None]


class ProcessRunner(abc.ABC):
    @abc.abstractmethod
    def run(self, executable_path: Union[Path, str], arguments: Arguments = None,
            working_directory: Union[Path, str, None] = None) -> int:
        """Runs the process and blocks until it exits."""
        raise NotImplementedError


class SubprocessRunner(ProcessRunner):
    def __init__(self, timeout: Optional[float] = None, check: bool = True):
        self.timeout = timeout
        self.check = check

    def run(self, executable_path, arguments=None, working_directory=None) -> int:
        if isinstance(arguments, str):
            args = shlex.split(arguments)
        else:
            args = list(arguments or [])
        cmd = [str(executable_path)] + args
        log.debug("Running %s in %s", cmd, working_directory or ".")
        try:
            proc = subprocess.run(cmd, cwd=working_directory, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise WorkloadError(f"{executable_path} did not finish within {self.timeout} seconds") from e
        except OSError as e:
            raise WorkloadError(f"Could not run {executable_path}: {e}") from e
        if self.check and proc.returncode != 0:
            raise WorkloadError(f"{executable_path} exited with status {proc.returncode}")
        return proc.returncode
