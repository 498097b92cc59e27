"""
Error classes for provisioning runs.

Every failure of a method dispatch surfaces as a ProvisionError subclass.
There are no retries: re-running the whole method is the recovery path,
which is safe because every remote step is re-runnable.
"""
from typing import Dict, List, Optional


class ProvisionError(Exception):
    """Base exception for obs_provision."""
    pass


class ConfigError(ProvisionError):
    """Configuration file is missing or invalid"""
    pass


class ValidationError(ProvisionError):
    """
    Caller-supplied arguments failed their schema.

    Raised before any remote command is issued.
    """

    def __init__(self, what: str, errors: Dict[str, str]):
        self.what = what
        self.errors = errors
        details = '; '.join(f'{field}: {message}' for field, message in errors.items())
        super().__init__(f'Invalid {what}: {details}')

    @property
    def fields(self) -> List[str]:
        return list(self.errors)


class PreconditionError(ProvisionError):
    """A required global argument (e.g. the host address) is missing or malformed"""
    pass


class UnknownMethod(ProvisionError):
    pass


class CommandFailed(ProvisionError):
    """
    An unguarded remote step failed; the rest of the sequence was skipped.

    The message names the host, the method and the failing command with its
    stderr, which is enough to re-run the step by hand.
    """

    def __init__(
        self,
        host: str,
        method: str,
        step: str,
        command: str,
        exit_code: Optional[int],
        stderr: str = '',
        stdout: str = '',
    ):
        self.host = host
        self.method = method
        self.step = step
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(self._describe())

    def _describe(self):
        message = (
            f'{self.method} on {self.host}: step {self.step!r} '
            f'failed with exit code {self.exit_code}\n'
            f'  command: {self.command}'
        )
        if self.stderr.strip():
            message += f'\n  stderr: {self.stderr.strip()}'
        return message


class RemoteConnectionError(CommandFailed):
    """The remote executor could not reach the host at all"""

    def _describe(self):
        message = f'{self.method} on {self.host}: cannot connect (step {self.step!r})\n  command: {self.command}'
        if self.stderr.strip():
            message += f'\n  stderr: {self.stderr.strip()}'
        return message


class StepTimeout(CommandFailed):
    """A remote step did not complete within the per-step timeout"""

    def __init__(self, *args, timeout: float = 0, **kwargs):
        self.timeout = timeout
        super().__init__(*args, **kwargs)

    def _describe(self):
        return (
            f'{self.method} on {self.host}: step {self.step!r} '
            f'timed out after {self.timeout}s\n  command: {self.command}'
        )


class SchemaViolation(ProvisionError):
    """
    A resource payload does not match the schema registered for its kind.

    This is a bug in a method procedure, not a user error.
    """
    pass


class ResourceNotFound(ProvisionError):
    pass
