"""
Unit tests for method registration and dispatch.
"""
import pytest
from pydantic import Field

from obs_provision.errors import (
    CommandFailed,
    PreconditionError,
    SchemaViolation,
    UnknownMethod,
    ValidationError,
)
from obs_provision.models import hub
from obs_provision.registry import Arguments, Model, Payload, is_valid_ssh_host
from obs_provision.steps import Step
from obs_provision.store import ResourceSpec


class Globals(Arguments):
    ssh_host: str
    ssh_user: str = 'root'


class TouchArgs(Arguments):
    vm_name: str = Field(min_length=1)


class TouchState(Payload):
    touched: bool


def _model():
    model = Model(
        type='@test/touch',
        version='1',
        name='touch',
        global_arguments=Globals,
        resources={'touch': ResourceSpec('touch', TouchState)},
    )

    @model.method('touch', TouchArgs, "Touch a marker file")
    def touch(args, invocation):
        invocation.run([
            Step('touch', 'touch /tmp/marker'),
            Step('check', 'test -f /tmp/marker'),
        ])
        invocation.write_resource('touch', args.vm_name, {'touched': True})

    @model.method('broken', TouchArgs)
    def broken(args, invocation):
        invocation.run([Step('noop', 'true')])
        invocation.write_resource('touch', args.vm_name, {'touched': 'yes'})

    @model.method('undeclared', TouchArgs)
    def undeclared(args, invocation):
        invocation.write_resource('other', args.vm_name, {})

    @model.method('touch-alias', TouchArgs, "Touch through an ssh_config alias", requires_host=False)
    def touch_alias(args, invocation):
        invocation.run([Step('touch', 'touch /tmp/marker')])
        invocation.write_resource('touch', args.vm_name, {'touched': True})

    return model


@pytest.fixture
def model():
    return _model()


class TestDispatch:

    def test_success_writes_and_returns_handles(self, model, executor, store):
        """Should run the steps then write one resource"""
        result = model.dispatch('touch', {'vmName': 'vm1'}, {'sshHost': '10.0.0.5'},
                                store=store, executor=executor)

        [handle] = result.data_handles
        assert store.get(handle).payload == {'touched': True}
        assert [entry.name for entry in result.log] == ['touch', 'check']
        assert executor.calls[0].user == 'root'
        assert executor.opened == executor.closed == 1

    def test_invalid_args_make_no_remote_calls(self, model, executor, store):
        """Should fail validation before opening a session"""
        with pytest.raises(ValidationError) as exc_info:
            model.dispatch('touch', {}, {'sshHost': '10.0.0.5'}, store=store, executor=executor)

        assert exc_info.value.fields == ['vmName']
        assert executor.opened == 0
        assert executor.calls == []

    def test_missing_host_is_validation_error(self, model, executor, store):
        """Should list the missing global argument"""
        with pytest.raises(ValidationError) as exc_info:
            model.dispatch('touch', {'vmName': 'vm1'}, {}, store=store, executor=executor)

        assert 'sshHost' in exc_info.value.fields
        assert executor.calls == []

    def test_unknown_field_rejected(self, model, executor, store):
        with pytest.raises(ValidationError) as exc_info:
            model.dispatch('touch', {'vmName': 'vm1', 'vmname': 'x'}, {'sshHost': 'h'},
                           store=store, executor=executor)

        assert exc_info.value.fields == ['vmname']

    @pytest.mark.parametrize('host', ['', '   ', 'host name', 'h;reboot', '-oProxyCommand=x'])
    def test_malformed_host_is_precondition_error(self, model, executor, store, host):
        """Should refuse unusable hosts before any remote command"""
        with pytest.raises(PreconditionError):
            model.dispatch('touch', {'vmName': 'vm1'}, {'sshHost': host}, store=store, executor=executor)

        assert executor.opened == 0

    def test_failure_writes_nothing_and_closes_session(self, model, executor, store):
        """Should leave the store untouched when a step aborts"""
        executor.on('test -f', exit_code=1)

        with pytest.raises(CommandFailed):
            model.dispatch('touch', {'vmName': 'vm1'}, {'sshHost': '10.0.0.5'}, store=store, executor=executor)

        assert store.versions('touch', 'vm1') == []
        assert executor.closed == 1

    def test_failure_keeps_previous_version(self, model, executor, store):
        """Should leave the last reconciled state readable after a failed rerun"""
        model.dispatch('touch', {'vmName': 'vm1'}, {'sshHost': '10.0.0.5'}, store=store, executor=executor)
        executor.on('test -f', exit_code=1)

        with pytest.raises(CommandFailed):
            model.dispatch('touch', {'vmName': 'vm1'}, {'sshHost': '10.0.0.5'}, store=store, executor=executor)

        assert len(store.versions('touch', 'vm1')) == 1

    def test_bad_payload_is_schema_violation(self, model, executor, store):
        with pytest.raises(SchemaViolation):
            model.dispatch('broken', {'vmName': 'vm1'}, {'sshHost': 'h'}, store=store, executor=executor)

        assert executor.closed == 1

    def test_undeclared_resource_is_schema_violation(self, model, executor, store):
        with pytest.raises(SchemaViolation):
            model.dispatch('undeclared', {'vmName': 'vm1'}, {'sshHost': 'h'}, store=store, executor=executor)

    def test_unknown_method(self, model, executor, store):
        with pytest.raises(UnknownMethod):
            model.dispatch('nope', {}, {'sshHost': 'h'}, store=store, executor=executor)


class TestRequiresHost:

    def test_alias_accepted_when_host_not_required(self, model, executor, store):
        """Should pass an ssh_config alias through to the executor"""
        model.dispatch('touch-alias', {'vmName': 'vm1'}, {'sshHost': 'lab_hub'}, store=store, executor=executor)

        assert executor.calls[0].host == 'lab_hub'
        assert store.read('touch', 'vm1') == {'touched': True}

    def test_alias_rejected_by_default(self, model, executor, store):
        with pytest.raises(PreconditionError):
            model.dispatch('touch', {'vmName': 'vm1'}, {'sshHost': 'lab_hub'}, store=store, executor=executor)

        assert executor.opened == 0

    @pytest.mark.parametrize('host', ['', '-oProxyCommand=x', 'lab hub'])
    def test_option_like_hosts_always_rejected(self, model, executor, store, host):
        """Should never hand ssh a host it could read as an option"""
        with pytest.raises(PreconditionError):
            model.dispatch('touch-alias', {'vmName': 'vm1'}, {'sshHost': host}, store=store, executor=executor)

        assert executor.opened == 0

    @pytest.mark.parametrize('method, args', [
        ('discover', {}),
        ('register', {'vmName': 'vm1', 'targetIp': '10.0.0.5'}),
    ])
    def test_hub_methods_check_host(self, executor, store, method, args):
        with pytest.raises(PreconditionError):
            hub.model.dispatch(method, args, {'sshHost': 'h;reboot', 'targetsDir': '/srv/targets'},
                               store=store, executor=executor)

        assert executor.opened == 0


class TestIsValidSshHost:

    @pytest.mark.parametrize('host', ['10.0.0.5', 'fe80::1', 'hancock', 'web-1.lan', 'web1.example.com.'])
    def test_valid(self, host):
        assert is_valid_ssh_host(host)

    @pytest.mark.parametrize('host', [None, '', ' 10.0.0.5', 'a b', 'x;y', '-x', 'host_', '$(id)'])
    def test_invalid(self, host):
        assert not is_valid_ssh_host(host)
