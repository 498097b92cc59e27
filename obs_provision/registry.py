"""
Method registry and dispatch.

A Model binds method names to an argument schema, the model's shared
global-argument schema and a procedure. Dispatch validates both argument
sets, checks the target host, opens one executor session and hands the
procedure an Invocation; the procedure runs its steps and finishes with
resource writes.
"""
import ipaddress
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Type

import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from obs_provision.errors import PreconditionError, SchemaViolation, UnknownMethod, ValidationError
from obs_provision.executor import RemoteExecutor, RemoteSession
from obs_provision.logger import invocation_logger
from obs_provision.steps import ExecutedStep, SequenceResult, Step, StepSequencer
from obs_provision.store import ResourceHandle, ResourceSpec, ResourceStore

_hostname_re = re.compile(r'(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*\.?')


class Arguments(BaseModel):
    """Base for argument schemas; fields are exposed under camelCase names"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='forbid')


class Payload(Arguments):
    """Base for resource payload schemas; no type coercion"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='forbid', strict=True)


def is_valid_ssh_host(host: Optional[str]) -> bool:
    """
    >>> is_valid_ssh_host('10.0.0.5'), is_valid_ssh_host('hancock.lan')
    (True, True)
    >>> is_valid_ssh_host(''), is_valid_ssh_host('a b'), is_valid_ssh_host('x;reboot')
    (False, False, False)
    """
    if not host or host != host.strip():
        return False
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return _hostname_re.fullmatch(host) is not None


def validate_arguments(schema: Type[BaseModel], raw: Optional[Mapping[str, Any]], what: str) -> BaseModel:
    try:
        return schema.model_validate(dict(raw or {}))
    except pydantic.ValidationError as e:
        errors = {}
        for error in e.errors():
            location = '.'.join(str(part) for part in error['loc']) or '(root)'
            errors.setdefault(location, error['msg'])
        raise ValidationError(what, errors)


@dataclass
class MethodResult:
    data_handles: List[ResourceHandle]
    log: List[ExecutedStep]


class Invocation:
    """
    In-flight context of one method call.

    Lives from dispatch to completion and owns the executor session, which
    dispatch closes on every exit path.
    """

    def __init__(
        self,
        model: 'Model',
        method: str,
        args: BaseModel,
        global_args: BaseModel,
        store: ResourceStore,
        session: RemoteSession,
        logger: logging.LoggerAdapter,
    ):
        self.model = model
        self.method = method
        self.args = args
        self.global_args = global_args
        self.store = store
        self.logger = logger
        self.handles: List[ResourceHandle] = []
        self._sequencer = StepSequencer(session, method, logger)

    @property
    def log(self) -> List[ExecutedStep]:
        return self._sequencer.log

    def run(self, steps: Sequence[Step]) -> SequenceResult:
        return self._sequencer.run(steps)

    def write_resource(self, kind: str, instance_key: str, payload) -> ResourceHandle:
        if kind not in self.model.resources:
            raise SchemaViolation(f'Model {self.model.type} declares no resource {kind!r}')
        handle = self.store.write(kind, instance_key, payload)
        self.logger.info("Wrote resource %s", handle, extra={'context': {'resource': str(handle)}})
        self.handles.append(handle)
        return handle


Procedure = Callable[[Any, Invocation], None]


@dataclass(frozen=True)
class Method:
    name: str
    arguments: Type[BaseModel]
    procedure: Procedure
    description: str = ''
    requires_host: bool = True


@dataclass
class Model:
    """
    A named set of methods sharing global arguments and resource kinds.

    Global arguments must have ssh_host and ssh_user fields.
    """
    type: str
    version: str
    global_arguments: Type[BaseModel]
    resources: Dict[str, ResourceSpec]
    name: str = ''
    methods: Dict[str, Method] = field(default_factory=dict)

    def method(self, name: str, arguments: Type[BaseModel], description: str = '', requires_host: bool = True):
        """
        Register a procedure under name.

        requires_host=False leaves sshHost to the executor as given, e.g. an
        alias from ~/.ssh/config that is not a valid hostname.
        """
        def decorator(procedure: Procedure) -> Procedure:
            self.methods[name] = Method(name, arguments, procedure, description, requires_host)
            return procedure
        return decorator

    def dispatch(
        self,
        method_name: str,
        raw_args: Optional[Mapping[str, Any]],
        raw_global_args: Optional[Mapping[str, Any]],
        *,
        store: ResourceStore,
        executor: RemoteExecutor,
    ) -> MethodResult:
        """
        Validate arguments and run one method.

        Raises:
            UnknownMethod, ValidationError, PreconditionError: before any remote command
            CommandFailed (and subclasses): a step aborted the sequence, nothing written
            SchemaViolation: the procedure produced a payload its resource does not accept
        """
        try:
            method = self.methods[method_name]
        except KeyError:
            raise UnknownMethod(f'{self.name or self.type} has no method {method_name!r}; '
                                f'known: {", ".join(sorted(self.methods))}')
        args = validate_arguments(method.arguments, raw_args, f'arguments for {method_name}')
        global_args = validate_arguments(self.global_arguments, raw_global_args, 'global arguments')
        host = global_args.ssh_host
        # never hand ssh something it could parse as an option
        unsafe = not host or host.startswith('-') or any(c.isspace() for c in host)
        if unsafe or (method.requires_host and not is_valid_ssh_host(host)):
            raise PreconditionError(
                f'{method_name}: sshHost {host!r} is not a usable host address; '
                f'the target must be running with an IP or resolvable name')
        for spec in self.resources.values():
            store.register(spec)

        logger = invocation_logger(__name__, {
            'model': self.name or self.type, 'method': method_name, 'host': host})
        logger.info("Dispatching %s as %s@%s", method_name, global_args.ssh_user, host)
        with executor.session(host, global_args.ssh_user) as session:
            invocation = Invocation(self, method_name, args, global_args, store, session, logger)
            try:
                method.procedure(args, invocation)
            except Exception as e:
                logger.error("%s failed on %s: %s", method_name, host, e)
                raise
        logger.info("%s completed on %s", method_name, host)
        return MethodResult(invocation.handles, list(invocation.log))
