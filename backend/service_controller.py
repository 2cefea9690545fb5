"""
DHCP Service Controller
Drives install/start/stop/restart of isc-dhcp-server and tracks its state
from the output of the service tools
"""

import os
import re
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional

from command_runner import CommandResult, CommandRunner
from config_manager import EngineConfig
from dhcp_parser import DHCPParser, validate_ip_address, validate_netmask
from errors import (RequiredFileMissing, ServiceStateError, UnknownServiceStatus,
                    UnsupportedPlatform)
from service_defaults import read_selected_interface, rewrite_interfaces
from settings_model import SettingsModel, StaticLease

logger = logging.getLogger(__name__)


class ServiceState(Enum):
    UNKNOWN = 'unknown'
    NOT_INSTALLED = 'not installed'
    INSTALLED = 'installed'
    STOPPED = 'stopped'
    RUNNING = 'running'

    def __str__(self):
        return self.value


INSTALLED_STATES = (ServiceState.INSTALLED, ServiceState.STOPPED, ServiceState.RUNNING)


def classify_status(output: str) -> Optional[ServiceState]:
    """
    Map service status output to a state

    'start' is checked before 'stop'. Output carrying neither falls back to
    the wording of LSB and systemd status lines; None means unrecognised.
    A failed unit counts as stopped.
    """
    text = output.lower()
    if 'start' in text:
        return ServiceState.RUNNING
    if 'stop' in text:
        return ServiceState.STOPPED
    if any(word in text for word in ('not running', 'inactive', 'dead', 'failed')):
        return ServiceState.STOPPED
    if 'running' in text or re.search(r'\bactive\b', text):
        return ServiceState.RUNNING
    return None


class ServiceController:
    """
    Lifecycle state machine for the DHCP service

    Every transition blocks until its commands have exited. Configuration is
    persisted by a background task which is awaited before any command that
    reads the persisted file.
    """

    def __init__(self,
                 settings: SettingsModel,
                 config: EngineConfig,
                 runner: CommandRunner = None,
                 parser: DHCPParser = None,
                 executor: ThreadPoolExecutor = None):
        self.settings = settings
        self.config = config
        self.runner = runner or CommandRunner(config.privilege_command, config.command_timeout)
        self.parser = parser or DHCPParser(
            config.config_path, backup_dir=os.path.join(config.staging_dir, 'backups'))
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix='dhcp-io')
        self._owns_executor = executor is None
        self._transition_lock = threading.RLock()
        self._state = ServiceState.UNKNOWN

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def staged_config_path(self) -> str:
        return os.path.join(self.config.staging_dir, 'dhcpd.conf.staged')

    @property
    def staged_defaults_path(self) -> str:
        return os.path.join(self.config.staging_dir, 'isc-dhcp-server.staged')

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    # Helpers

    def _set_state(self, state: ServiceState) -> None:
        if state != self._state:
            logger.info(f"DHCP service state: {self._state} -> {state}")
        self._state = state
        self.settings.set_service_status(
            installed=state in INSTALLED_STATES,
            running=state == ServiceState.RUNNING
        )

    def _require_unix(self) -> None:
        if not self.settings.os_is_unix:
            logger.error("System is not a Unix environment")
            raise UnsupportedPlatform()

    def _require_state(self, operation: str, allowed) -> None:
        if self._state not in allowed:
            logger.warning(f"Rejected {operation}: service is {self._state}")
            raise ServiceStateError(operation, self._state)

    def _in_background(self, fn: Callable, *args):
        """Run a file task on the I/O executor and wait for it"""
        return self._executor.submit(fn, *args).result()

    def _run(self, command: List[str], privileged: bool = True) -> CommandResult:
        return self.runner.run(command, privileged=privileged)

    def _service_command(self, action: str) -> CommandResult:
        result = self._run(['service', self.config.service_name, action])
        logger.debug(f"service {self.config.service_name} {action}: {result.stdout.strip()}")
        return result

    def _persist_staged(self) -> str:
        """Write the current settings to the staged config file"""
        path = self.staged_config_path
        self._in_background(self.parser.save, self.settings, path)
        logger.debug(f"Persisted settings to {path}")
        return path

    # Host detection

    def detect_host(self) -> None:
        """Record whether this is a Unix host and whether we run as root"""
        is_unix = os.name == 'posix'
        self.settings.set_os_is_unix(is_unix)
        self.settings.set_user_is_superuser(is_unix and os.geteuid() == 0)
        logger.info(f"Host detected: unix={is_unix}, superuser={self.settings.user_is_superuser}")

    # Transitions

    def probe_installed(self) -> ServiceState:
        """Query the package database for the DHCP server package"""
        self._require_unix()
        with self._transition_lock:
            result = self._run(
                ['dpkg-query', '-W', '-f=${Status}', self.config.package_name],
                privileged=False
            )
            output = result.stdout.strip()
            logger.info(f"DHCP server install status: {output or 'not installed'}")
            if 'ok' in output:
                if self._state not in INSTALLED_STATES:
                    self._set_state(ServiceState.INSTALLED)
            else:
                self._set_state(ServiceState.NOT_INSTALLED)
            return self._state

    def install(self) -> ServiceState:
        """Install the DHCP server package"""
        self._require_unix()
        with self._transition_lock:
            self._require_state('install', (ServiceState.NOT_INSTALLED,))
            self._persist_staged()
            self._run(['apt-get', 'install', '-y', self.config.package_name])
            return self.probe_installed()

    def probe_status(self) -> ServiceState:
        """
        Query the running status of the service

        Raises:
            UnknownServiceStatus: If the output is not recognised; the state
                is set to STOPPED before raising
        """
        self._require_unix()
        with self._transition_lock:
            self._require_state('query status', INSTALLED_STATES)
            result = self._service_command('status')
            logger.info(f"DHCP server status: {result.stdout.strip()}")
            state = classify_status(result.stdout)
            if state is None:
                self._set_state(ServiceState.STOPPED)
                logger.error(f"Unknown DHCP server status: {result.stdout.strip()}")
                raise UnknownServiceStatus(result.stdout)
            self._set_state(state)
            return state

    def refresh_status(self) -> ServiceState:
        """Probe installation and, when installed, running status"""
        if self.probe_installed() == ServiceState.NOT_INSTALLED:
            return self._state
        return self.probe_status()

    def _lifecycle(self, action: str, required: ServiceState) -> ServiceState:
        self._require_unix()
        with self._transition_lock:
            self._require_state(action, (required,))
            self._persist_staged()
            self._service_command(action)
            return self.probe_status()

    def start(self) -> ServiceState:
        return self._lifecycle('start', ServiceState.STOPPED)

    def stop(self) -> ServiceState:
        return self._lifecycle('stop', ServiceState.RUNNING)

    def restart(self) -> ServiceState:
        return self._lifecycle('restart', ServiceState.RUNNING)

    def apply_selected_interface(self) -> Optional[str]:
        """
        Write the selected interface into the service defaults file

        The original file is copied to a .bak file before it is overwritten.
        """
        self._require_unix()
        with self._transition_lock:
            self._require_state('apply interface', INSTALLED_STATES)
            selection = self.settings.selected_interface
            if selection is None:
                logger.warning("No interface selected, leaving service defaults unchanged")
                return None

            defaults_path = self.config.defaults_path
            if not os.path.exists(defaults_path):
                logger.error(f"Service defaults file not found: {defaults_path}")
                raise RequiredFileMissing(defaults_path)

            lines = self._in_background(_read_lines, defaults_path)
            new_lines = rewrite_interfaces(lines, selection.name)
            self._in_background(self.parser.write_config, '\n'.join(new_lines) + '\n',
                                self.staged_defaults_path)

            self._run(['cp', defaults_path, f"{defaults_path}.bak"])
            self._run(['mv', self.staged_defaults_path, defaults_path])
            logger.info(f"Applied interface {selection.name} to {defaults_path}")
            return selection.name

    def apply_configuration(self) -> ServiceState:
        """
        Install the current settings as the live configuration

        Restarts the service only if it was running beforehand.
        """
        self._require_unix()
        with self._transition_lock:
            self._require_state('apply configuration', INSTALLED_STATES)
            was_running = self._state == ServiceState.RUNNING

            staged = self._persist_staged()
            backup = self._in_background(self.parser.create_backup)
            if backup:
                logger.info(f"Backed up live config to {backup}")
            self._run(['mv', staged, self.config.config_path])
            logger.info(f"Moved {staged} to {self.config.config_path}")

            self.apply_selected_interface()

            if was_running:
                return self.restart()
            return self._state

    # File operations

    def load_settings_file(self, path: str = None) -> 'Future[List[StaticLease]]':
        """
        Start loading a configuration file into the settings model

        Returns:
            Future resolving to the parsed static leases
        """
        path = path or self.config.config_path
        if not os.path.exists(path):
            logger.error(f"DHCP config file not found: {path}")
            raise RequiredFileMissing(path)
        logger.info(f"Loading DHCP settings from {path}")
        return self._executor.submit(self.parser.load, self.settings, path)

    def save_settings_file(self, path: str) -> 'Future[str]':
        """Start writing the current settings to path"""
        return self._executor.submit(self.parser.save, self.settings, path)

    def load_selected_interface(self) -> Optional[str]:
        """Select the interface currently configured in the service defaults file"""
        self._require_unix()
        self._require_state('read interface', INSTALLED_STATES)
        defaults_path = self.config.defaults_path
        if not os.path.exists(defaults_path):
            logger.error(f"Service defaults file not found: {defaults_path}")
            raise RequiredFileMissing(defaults_path)

        name = read_selected_interface(self._in_background(_read_lines, defaults_path))
        if name:
            logger.info(f"Found selected interface {name}")
            self.settings.select_interface(name)
        return name

    def ensure_leases_file(self) -> str:
        """Create an empty leases file when the server has not written one yet"""
        self._require_unix()
        path = self.config.leases_path
        if not os.path.exists(path):
            logger.info(f"Creating missing leases file {path}")
            self._run(['touch', path])
        if not os.path.exists(path):
            raise RequiredFileMissing(path)
        return path

    def set_host_address(self, interface: str, ip_address: str, netmask: str) -> CommandResult:
        """Assign a static IPv4 address to a host interface"""
        self._require_unix()
        if not validate_ip_address(ip_address):
            raise ValueError(f"Invalid IP address: {ip_address}")
        if not validate_netmask(netmask):
            raise ValueError(f"Invalid netmask: {netmask}")
        with self._transition_lock:
            result = self._run(['ifconfig', interface, ip_address, 'netmask', netmask])
            logger.info(f"Set {interface} address to {ip_address}/{netmask}")
            return result


def _read_lines(path: str) -> List[str]:
    with open(path, 'r') as f:
        return f.read().splitlines()
