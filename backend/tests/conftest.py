"""Shared fixtures for the DHCP engine tests"""
import pytest

from command_runner import CommandResult
from config_manager import EngineConfig
from errors import CommandTimedOut
from service_controller import ServiceController
from settings_model import SettingsModel

DPKG_QUERY = 'dpkg-query -W -f=${Status} isc-dhcp-server'
SERVICE_STATUS = 'service isc-dhcp-server status'


class FakeRunner:
    """Records commands and replays canned output.

    Outputs are keyed by the space-joined command. A list value is consumed
    one item per call, the last item repeating; an exception value is raised.
    """

    def __init__(self, outputs=None):
        self.outputs = dict(outputs or {})
        self.commands = []
        self.privileged = []

    def run(self, command, privileged=False, timeout=None):
        key = ' '.join(command)
        self.commands.append(key)
        self.privileged.append(privileged)

        output = self.outputs.get(key, '')
        if isinstance(output, list):
            output = output.pop(0) if len(output) > 1 else output[0]
        if isinstance(output, BaseException):
            raise output
        return CommandResult(list(command), 0, output, '')


@pytest.fixture
def settings():
    model = SettingsModel()
    model.set_os_is_unix(True)
    return model


@pytest.fixture
def engine_config(tmp_path):
    staging = tmp_path / 'staging'
    staging.mkdir()
    return EngineConfig(
        config_path=str(tmp_path / 'dhcpd.conf'),
        leases_path=str(tmp_path / 'dhcpd.leases'),
        defaults_path=str(tmp_path / 'isc-dhcp-server'),
        service_name='isc-dhcp-server',
        staging_dir=str(staging),
        privilege_command=None,
        command_timeout=5,
        watch_leases=False,
    )


@pytest.fixture
def runner():
    return FakeRunner({
        DPKG_QUERY: 'install ok installed',
        SERVICE_STATUS: 'isc-dhcp-server stop/waiting',
    })


@pytest.fixture
def controller(settings, engine_config, runner):
    ctl = ServiceController(settings, engine_config, runner=runner)
    yield ctl
    ctl.shutdown()


@pytest.fixture
def timed_out():
    return CommandTimedOut('service isc-dhcp-server start', 5)
