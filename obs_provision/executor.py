"""
Remote executor: runs a command string on a host as a user.

The executor reports what happened and leaves the abort-or-tolerate
decision to the step sequencer. Connection failures and timeouts are
raised; a command exiting non-zero is a normal result.
"""
import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CannotConnect(Exception):
    pass


class CommandTimedOut(Exception):

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f'Timed out after {timeout}s')


class RemoteSession(ABC):
    """An open connection to one (host, user) pair"""

    host: str
    user: str

    @abstractmethod
    def run(self, command: str, stdin: Optional[bytes] = None) -> CommandResult:
        """Run a shell command; raise CannotConnect or CommandTimedOut"""
        pass

    def close(self):
        pass


class RemoteExecutor(ABC):

    @abstractmethod
    def open(self, host: str, user: str) -> RemoteSession:
        pass

    @contextmanager
    def session(self, host: str, user: str) -> Iterator[RemoteSession]:
        """Open a session that is closed on every exit path"""
        session = self.open(host, user)
        try:
            yield session
        finally:
            session.close()


class SSHSession(RemoteSession):
    """OpenSSH session multiplexed over a per-invocation control socket"""

    def __init__(self, host: str, user: str, timeout: Optional[float], options: Sequence[str] = ()):
        self.host = host
        self.user = user
        self._timeout = timeout
        self._options = list(options)
        self._control_dir = tempfile.mkdtemp(prefix='obs-provision-')
        self._control_path = os.path.join(self._control_dir, 'control')

    def _build(self, command: str):
        # In BatchMode, execution fails if interactive input is required.
        full_command = [
            'ssh', '-oBatchMode=yes',
            '-oControlMaster=auto',
            f'-oControlPath={self._control_path}',
            '-oControlPersist=60',
            *self._options,
            '-l', self.user,
            self.host,
            command,
            ]
        _logger.debug("Run: %s", shlex.join(full_command))
        return full_command

    def run(self, command, stdin=None):
        kwargs = {'input': stdin} if stdin is not None else {'stdin': subprocess.DEVNULL}
        try:
            r = subprocess.run(
                self._build(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self._timeout,
                **kwargs,
                )
        except subprocess.TimeoutExpired:
            raise CommandTimedOut(self._timeout)
        except FileNotFoundError:
            raise CannotConnect("ssh client not found in PATH")
        stderr = r.stderr.decode(errors='replace')
        if r.returncode == 255:
            raise CannotConnect(stderr)
        return CommandResult(r.returncode, r.stdout.decode(errors='replace'), stderr)

    def close(self):
        try:
            subprocess.run(
                ['ssh', '-O', 'exit', f'-oControlPath={self._control_path}', self.host],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                timeout=30,
                )
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            _logger.warning("Could not stop SSH control master for %s: %s", self.host, e)
        finally:
            shutil.rmtree(self._control_dir, ignore_errors=True)


class SSHExecutor(RemoteExecutor):

    def __init__(self, timeout: Optional[float] = 600, options: Sequence[str] = ()):
        self._timeout = timeout
        self._options = list(options)

    def open(self, host, user):
        return SSHSession(host, user, self._timeout, self._options)


_logger = logging.getLogger(__name__)
