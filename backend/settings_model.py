"""
DHCP Settings Model
In-memory state shared by the parsers, the service controller and the API
"""

import logging
import threading
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Topics published by SettingsModel to its subscribers
OS_IS_UNIX_CHANGED = 'os_is_unix'
USER_IS_SUPERUSER_CHANGED = 'user_is_superuser'
SETTINGS_LOADED = 'settings_loaded'
STATIC_LEASES_CHANGED = 'static_leases'
DHCPD_LEASES_CHANGED = 'dhcpd_leases'
SERVICE_STATUS_CHANGED = 'service_status'
INTERFACE_CHANGED = 'interface'


@dataclass
class StaticLease:
    """Fixed IP to hardware address binding declared in dhcpd.conf"""
    id: str = ''
    device_name: str = ''
    mac_address: str = ''
    ip_address: str = ''

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class DhcpdLease:
    """Runtime lease entry taken from dhcpd.leases"""
    ip_address: str = ''
    mac_address: str = ''
    device_name: Optional[str] = None
    lease_start: Optional[str] = None
    lease_end: Optional[str] = None
    lease_state: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


@dataclass
class InterfaceSelection:
    """Network interface the DHCP service binds to"""
    name: str

    def to_dict(self) -> Dict[str, str]:
        return {'name': self.name}


class SettingsModel:
    """
    Settings and derived runtime state of the managed DHCP server

    The static-lease set and the lease table are guarded by a single lock.
    Setters that change host or service state notify subscribers
    synchronously after the update has been committed.
    """

    # Plain fields accepted by update_from_dict()
    EDITABLE_FIELDS = (
        'default_lease_time', 'max_lease_time', 'subnet', 'subnet_mask',
        'ip_range_start', 'ip_range_end', 'gateway', 'primary_dns',
        'secondary_dns', 'host_subnet_mask',
    )

    def __init__(self,
                 default_lease_time: int = 600,
                 max_lease_time: int = 7200):
        self.default_lease_time = default_lease_time
        self.max_lease_time = max_lease_time
        self.subnet: Optional[str] = None
        self.subnet_mask: Optional[str] = None
        self.ip_range_start: Optional[str] = None
        self.ip_range_end: Optional[str] = None
        self.gateway: Optional[str] = None
        self.primary_dns: Optional[str] = None
        self.secondary_dns: Optional[str] = None
        self.host_subnet_mask: Optional[str] = None

        self._lock = threading.RLock()
        self._static_leases: List[StaticLease] = []
        self._dhcpd_leases: Dict[str, DhcpdLease] = {}
        self._selected_interface: Optional[InterfaceSelection] = None

        self._os_is_unix = False
        self._user_is_superuser = False
        self._is_dhcp_server_installed = False
        self._is_dhcp_server_running = False

        self._subscribers: Dict[str, List[Callable]] = {}

    # Subscriptions

    def subscribe(self, topic: str, callback: Callable) -> None:
        """Register callback(model) for a topic"""
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

    def unsubscribe(self, topic: str, callback: Callable) -> None:
        with self._lock:
            callbacks = self._subscribers.get(topic, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def _notify(self, topic: str) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            callback(self)

    # Host flags

    @property
    def os_is_unix(self) -> bool:
        return self._os_is_unix

    def set_os_is_unix(self, value: bool) -> None:
        self._os_is_unix = bool(value)
        logger.debug(f"os_is_unix set to {self._os_is_unix}")
        self._notify(OS_IS_UNIX_CHANGED)

    @property
    def user_is_superuser(self) -> bool:
        return self._user_is_superuser

    def set_user_is_superuser(self, value: bool) -> None:
        self._user_is_superuser = bool(value)
        logger.debug(f"user_is_superuser set to {self._user_is_superuser}")
        self._notify(USER_IS_SUPERUSER_CHANGED)

    # Service status

    @property
    def is_dhcp_server_installed(self) -> bool:
        return self._is_dhcp_server_installed

    @property
    def is_dhcp_server_running(self) -> bool:
        return self._is_dhcp_server_running

    def set_service_status(self, installed: bool, running: bool) -> None:
        """Update both derived service flags as one change"""
        with self._lock:
            self._is_dhcp_server_installed = bool(installed)
            self._is_dhcp_server_running = bool(installed) and bool(running)
        self._notify(SERVICE_STATUS_CHANGED)

    # Static leases

    def get_static_leases(self) -> List[StaticLease]:
        """Snapshot of the static-lease set in insertion order"""
        with self._lock:
            return list(self._static_leases)

    def add_static_lease(self, lease: StaticLease) -> StaticLease:
        """Append a static lease, assigning the next free id when missing"""
        with self._lock:
            if not lease.id:
                used = [int(existing.id) for existing in self._static_leases if existing.id.isdigit()]
                lease.id = str(max(used, default=0) + 1)
            self._static_leases.append(lease)
        self._notify(STATIC_LEASES_CHANGED)
        return lease

    def remove_static_lease(self, lease_id: str) -> bool:
        with self._lock:
            before = len(self._static_leases)
            self._static_leases = [lease for lease in self._static_leases if lease.id != lease_id]
            removed = len(self._static_leases) != before
        if removed:
            self._notify(STATIC_LEASES_CHANGED)
        return removed

    def replace_static_leases(self, leases: List[StaticLease]) -> None:
        with self._lock:
            self._static_leases = list(leases)
        self._notify(STATIC_LEASES_CHANGED)

    # Runtime leases

    def get_dhcpd_leases(self) -> Dict[str, DhcpdLease]:
        """Snapshot of the lease table keyed by hardware address"""
        with self._lock:
            return dict(self._dhcpd_leases)

    def set_dhcpd_leases(self, leases: Dict[str, DhcpdLease]) -> None:
        """Replace the whole lease table in one step"""
        with self._lock:
            self._dhcpd_leases = dict(leases)
        self._notify(DHCPD_LEASES_CHANGED)

    # Interface selection

    @property
    def selected_interface(self) -> Optional[InterfaceSelection]:
        return self._selected_interface

    def select_interface(self, name: Optional[str]) -> None:
        with self._lock:
            self._selected_interface = InterfaceSelection(name) if name else None
        self._notify(INTERFACE_CHANGED)

    # Bulk updates

    def apply_parsed_settings(self, values: Dict, static_leases: List[StaticLease]) -> None:
        """Commit the result of a configuration parse as one update"""
        with self._lock:
            for key, value in values.items():
                setattr(self, key, value)
            self._static_leases = list(static_leases)
        self._notify(STATIC_LEASES_CHANGED)
        self._notify(SETTINGS_LOADED)

    def update_from_dict(self, data: Dict, validate_lease: Callable = None) -> None:
        """
        Apply user edits; unknown keys are rejected

        Args:
            data: Field values and optionally a 'static_leases' list of objects
            validate_lease: Called as validate_lease(device_name, mac_address,
                ip_address) for every static lease; raises ValueError to reject

        Raises:
            ValueError: If any value is invalid; nothing is applied
        """
        unknown = [key for key in data if key not in self.EDITABLE_FIELDS and key != 'static_leases']
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = {}
        for key in self.EDITABLE_FIELDS:
            if key not in data:
                continue
            if key in ('default_lease_time', 'max_lease_time'):
                try:
                    value = int(data[key])
                except (TypeError, ValueError):
                    raise ValueError(f"{key} must be an integer")
                if value <= 0:
                    raise ValueError(f"{key} must be positive")
                values[key] = value
            else:
                # Empty strings clear optional fields
                values[key] = data[key] or None

        static_leases = None
        if 'static_leases' in data:
            entries = data['static_leases']
            if not isinstance(entries, list):
                raise ValueError("static_leases must be a list")
            static_leases = []
            for index, entry in enumerate(entries, start=1):
                if not isinstance(entry, dict):
                    raise ValueError(f"static lease {index} must be an object")
                lease = StaticLease(
                    id=str(index),
                    device_name=str(entry.get('device_name', '')),
                    mac_address=str(entry.get('mac_address', '')),
                    ip_address=str(entry.get('ip_address', '')),
                )
                if validate_lease:
                    validate_lease(lease.device_name, lease.mac_address, lease.ip_address)
                static_leases.append(lease)

        with self._lock:
            for key, value in values.items():
                setattr(self, key, value)
        if static_leases is not None:
            self.replace_static_leases(static_leases)
        self._notify(SETTINGS_LOADED)

    def to_dict(self) -> Dict:
        with self._lock:
            return {
                'default_lease_time': self.default_lease_time,
                'max_lease_time': self.max_lease_time,
                'subnet': self.subnet,
                'subnet_mask': self.subnet_mask,
                'ip_range_start': self.ip_range_start,
                'ip_range_end': self.ip_range_end,
                'gateway': self.gateway,
                'primary_dns': self.primary_dns,
                'secondary_dns': self.secondary_dns,
                'host_subnet_mask': self.host_subnet_mask,
                'static_leases': [lease.to_dict() for lease in self._static_leases],
                'selected_interface': self._selected_interface.name if self._selected_interface else None,
                'is_dhcp_server_installed': self._is_dhcp_server_installed,
                'is_dhcp_server_running': self._is_dhcp_server_running,
            }
