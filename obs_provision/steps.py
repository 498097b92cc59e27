"""
Step sequencer: runs an ordered list of remote shell steps as one operation.

There is no rollback. Every step must be safe to re-run from the top after
a partial failure: naturally idempotent (package install, mkdir -p, file
overwrite) or guarded in the shell ("check || act", "act || true").
Steps marked guarded may exit non-zero without stopping the sequence;
anything else aborts it with CommandFailed.
"""
import logging
import posixpath
import shlex
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from obs_provision.errors import CommandFailed, RemoteConnectionError, StepTimeout
from obs_provision.executor import CannotConnect, CommandResult, CommandTimedOut, RemoteSession
from obs_provision.logger import InvocationLogger

CommandSource = Union[str, Callable[[Mapping[str, CommandResult]], str]]


@dataclass(frozen=True)
class Step:
    """
    One remote command.

    command is either a string or a callable building the string from the
    results of the steps already run, keyed by step name.
    """
    name: str
    command: CommandSource
    guarded: bool = False

    def render(self, previous: Mapping[str, CommandResult]) -> str:
        if callable(self.command):
            return self.command(previous)
        return self.command

    def stdin(self) -> Optional[bytes]:
        return None


@dataclass(frozen=True)
class WriteFile(Step):
    """
    Write a remote file atomically.

    Content travels on stdin into a temp file beside the destination and is
    renamed over it, so a reader never sees a half-written file and the
    content is never interpolated into the shell command.
    """
    command: CommandSource = ''
    path: str = ''
    content: str = ''
    mode: str = '644'

    def render(self, previous):
        directory, name = posixpath.split(self.path)
        template = shlex.quote(posixpath.join(directory or '.', f'.{name}.XXXXXX'))
        return (
            f'tmp=$(mktemp {template}) && cat > "$tmp" && chmod {self.mode} "$tmp" '
            f'&& mv -f "$tmp" {shlex.quote(self.path)} || {{ rm -f "$tmp"; false; }}'
        )

    def stdin(self):
        return self.content.encode('utf-8')


@dataclass(frozen=True)
class ExecutedStep:
    """Side-effect log entry"""
    name: str
    command: str
    exit_code: Optional[int]
    guarded: bool

    def as_dict(self):
        return {
            'step': self.name,
            'command': self.command,
            'exitCode': self.exit_code,
            'guarded': self.guarded,
        }


@dataclass
class SequenceResult:
    results: Dict[str, CommandResult] = field(default_factory=dict)
    log: List[ExecutedStep] = field(default_factory=list)

    def __getitem__(self, step_name: str) -> CommandResult:
        return self.results[step_name]


class StepSequencer:
    """Runs steps strictly in order against one open session"""

    def __init__(self, session: RemoteSession, method: str, logger: Optional[logging.LoggerAdapter] = None):
        self._session = session
        self._method = method
        self._logger = logger or InvocationLogger(_logger, {})
        self.log: List[ExecutedStep] = []

    def run(self, steps: Sequence[Step]) -> SequenceResult:
        outcome = SequenceResult(log=self.log)
        for step in steps:
            outcome.results[step.name] = self._run_step(step, outcome.results)
        return outcome

    def _run_step(self, step: Step, previous: Mapping[str, CommandResult]) -> CommandResult:
        host = self._session.host
        command = step.render(previous)
        context = {'step': step.name, 'guarded': step.guarded}
        self._logger.info("Running step %s", step.name, extra={'context': context})
        try:
            result = self._session.run(command, stdin=step.stdin())
        except CannotConnect as e:
            self.log.append(ExecutedStep(step.name, command, None, step.guarded))
            raise RemoteConnectionError(host, self._method, step.name, command, None, stderr=str(e))
        except CommandTimedOut as e:
            self.log.append(ExecutedStep(step.name, command, None, step.guarded))
            raise StepTimeout(host, self._method, step.name, command, None, timeout=e.timeout)
        self.log.append(ExecutedStep(step.name, command, result.exit_code, step.guarded))
        if result.ok:
            return result
        if step.guarded:
            self._logger.info(
                "Guarded step %s exited with %d, continuing", step.name, result.exit_code,
                extra={'context': context})
            return result
        self._logger.error(
            "Step %s failed with exit code %d", step.name, result.exit_code,
            extra={'context': {**context, 'stderr': result.stderr}})
        raise CommandFailed(
            host, self._method, step.name, command, result.exit_code,
            stderr=result.stderr, stdout=result.stdout)


_logger = logging.getLogger(__name__)
