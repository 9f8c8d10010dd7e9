"""Unit tests configuration file."""

import pytest
from fakevm import FakeVM

from jdwpcalc.proto import ConnectionConfig, ReflectiveInvoker, SessionConfig, connect


def pytest_configure(config):
    """Disable verbose output when running tests."""
    terminal = config.pluginmanager.getplugin("terminal")
    if terminal:
        terminal.TerminalReporter.showfspath = False


@pytest.fixture
def make_vm():
    vms = []

    def factory(**kwargs):
        vm = FakeVM(**kwargs).start()
        vms.append(vm)
        return vm

    yield factory
    for vm in vms:
        vm.stop()


@pytest.fixture
def vm(make_vm):
    return make_vm()


@pytest.fixture
def make_connection(make_vm):
    connections = []

    def factory(vm, **kwargs):
        kwargs.setdefault("handshake_timeout", 2.0)
        kwargs.setdefault("request_timeout", 2.0)
        connection = connect(ConnectionConfig(port=vm.port, **kwargs))
        connections.append(connection)
        return connection

    yield factory
    for connection in connections:
        connection.close()


@pytest.fixture
def connection(vm, make_connection):
    return make_connection(vm)


@pytest.fixture
def invoker(connection):
    invoker = ReflectiveInvoker(connection, SessionConfig(event_timeout=2.0))
    invoker.attach()
    return invoker
