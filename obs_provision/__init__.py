"""
obs_provision: provision and register monitoring agents on remote hosts

Methods run a linear sequence of re-runnable shell steps over SSH and record
the observed outcome as versioned resource state.
"""

from obs_provision.errors import (
    CommandFailed,
    PreconditionError,
    ProvisionError,
    RemoteConnectionError,
    SchemaViolation,
    StepTimeout,
    ValidationError,
)
from obs_provision.executor import CommandResult, RemoteExecutor, SSHExecutor
from obs_provision.registry import MethodResult, Model
from obs_provision.steps import Step, StepSequencer, WriteFile
from obs_provision.store import FileResourceStore, MemoryResourceStore, ResourceHandle, ResourceStore

__all__ = [
    'CommandFailed',
    'CommandResult',
    'FileResourceStore',
    'MemoryResourceStore',
    'MethodResult',
    'Model',
    'PreconditionError',
    'ProvisionError',
    'RemoteConnectionError',
    'RemoteExecutor',
    'ResourceHandle',
    'ResourceStore',
    'SSHExecutor',
    'SchemaViolation',
    'Step',
    'StepSequencer',
    'StepTimeout',
    'ValidationError',
    'WriteFile',
]
__version__ = '0.1.0'
