"""
Shared fixtures: a scripted remote executor in place of SSH.
"""
from dataclasses import dataclass
from typing import List, Optional

import pytest

from obs_provision.executor import CommandResult, RemoteExecutor, RemoteSession
from obs_provision.store import MemoryResourceStore


@dataclass
class Call:
    host: str
    user: str
    command: str
    stdin: Optional[bytes]


class ScriptedSession(RemoteSession):

    def __init__(self, executor: 'ScriptedExecutor', host: str, user: str):
        self.host = host
        self.user = user
        self._executor = executor

    def run(self, command, stdin=None):
        self._executor.calls.append(Call(self.host, self.user, command, stdin))
        for fragment, outcome in self._executor.rules:
            if fragment in command:
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return CommandResult(0)

    def close(self):
        self._executor.closed += 1


class ScriptedExecutor(RemoteExecutor):
    """
    Every command succeeds with empty output unless a rule matches.

    Rules match on a substring of the command; the first match wins.
    """

    def __init__(self):
        self.rules = []
        self.calls: List[Call] = []
        self.opened = 0
        self.closed = 0

    def on(self, fragment, exit_code=0, stdout='', stderr='', raises=None):
        self.rules.append((fragment, raises if raises is not None else CommandResult(exit_code, stdout, stderr)))
        return self

    def open(self, host, user):
        self.opened += 1
        return ScriptedSession(self, host, user)

    @property
    def commands(self) -> List[str]:
        return [call.command for call in self.calls]

    def uploads(self) -> List[str]:
        return [call.stdin.decode() for call in self.calls if call.stdin is not None]


@pytest.fixture
def executor():
    return ScriptedExecutor()


@pytest.fixture
def store():
    return MemoryResourceStore()
