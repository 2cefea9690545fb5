"""
DHCP Lease Parser
Parses ISC DHCP Server lease file (dhcpd.leases) into a table keyed by hardware address
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from dhcp_parser import clean_line
from errors import LeaseFileUnreadable
from settings_model import DhcpdLease, SettingsModel

logger = logging.getLogger(__name__)


def _lease_timestamp(cleanline: str) -> Optional[str]:
    """Date and time tokens of a starts/ends statement"""
    tokens = cleanline.split(' ')
    if len(tokens) > 3:
        return f"{tokens[2]} {tokens[3].rstrip(';')}"
    return None


def _statement_text(cleanline: str, keyword: str) -> str:
    end = cleanline.find(';')
    if end == -1:
        end = len(cleanline)
    return cleanline[len(keyword):end].strip()


def parse_lease_lines(lines: Iterable[str]) -> Dict[str, DhcpdLease]:
    """
    Parse dhcpd.leases lines

    The file is an append-only history, so a hardware address may appear in
    several blocks. Blocks are committed in file order and the last one wins.
    Blocks without a hardware address are skipped.

    Args:
        lines: Lines of the leases file, in order

    Returns:
        Mapping of hardware address to DhcpdLease
    """
    # ISC DHCP lease format:
    # lease 192.168.1.100 {
    #   starts 4 2024/01/15 10:30:00;
    #   ends 4 2024/01/15 11:30:00;
    #   binding state active;
    #   hardware ethernet 00:11:22:33:44:55;
    #   client-hostname "hostname";
    # }
    leases: Dict[str, DhcpdLease] = {}
    current: Optional[DhcpdLease] = None

    for line in lines:
        cleanline = clean_line(line)
        if not cleanline or cleanline.startswith('#'):
            continue

        if cleanline.startswith('lease ') and '{' in cleanline:
            current = DhcpdLease(ip_address=cleanline[len('lease'):cleanline.index('{')].strip())
            continue

        if current is None:
            # server-duid, authoring-byte-order and friends
            continue

        if cleanline.startswith('hardware ethernet'):
            current.mac_address = _statement_text(cleanline, 'hardware ethernet')
        elif cleanline.startswith('client-hostname'):
            current.device_name = _statement_text(cleanline, 'client-hostname').strip('"')
        elif cleanline.startswith('starts'):
            current.lease_start = _lease_timestamp(cleanline) or current.lease_start
        elif cleanline.startswith('ends'):
            current.lease_end = _lease_timestamp(cleanline) or current.lease_end
        elif cleanline.startswith('binding state'):
            tokens = cleanline.split(' ')
            if len(tokens) > 2:
                current.lease_state = tokens[2].rstrip(';')

        if '}' in cleanline:
            if current.mac_address:
                leases[current.mac_address] = current
            else:
                logger.debug(f"Skipping lease {current.ip_address} without hardware address")
            current = None

    return leases


def effective_state(lease: DhcpdLease, now: datetime = None) -> str:
    """
    Determine the current state of a lease

    Args:
        lease: Parsed lease
        now: Reference time in UTC, defaults to the current time

    Returns:
        'expired' for an active binding whose end time has passed,
        otherwise the binding state ('active' when none is recorded)
    """
    binding_state = lease.lease_state or 'active'
    if binding_state in ('free', 'abandoned', 'backup'):
        return binding_state

    if lease.lease_end and lease.lease_end != 'never':
        try:
            # ISC DHCP writes UTC times as YYYY/MM/DD HH:MM:SS
            end_time = datetime.strptime(lease.lease_end, '%Y/%m/%d %H:%M:%S')
            now = now or datetime.now(timezone.utc).replace(tzinfo=None)
            if now > end_time:
                return 'expired'
        except ValueError:
            logger.warning(f"Could not parse end time: {lease.lease_end}")

    return binding_state


class LeaseParser:
    """Parser for ISC DHCP Server lease files"""

    def __init__(self, leases_path: str):
        """
        Initialize lease parser

        Args:
            leases_path: Path to dhcpd.leases file
        """
        self.leases_path = leases_path
        logger.debug(f"Initialized LeaseParser with path: {leases_path}")

    def read_leases_file(self) -> List[str]:
        """
        Read the DHCP leases file

        Returns:
            Lines of the leases file

        Raises:
            LeaseFileUnreadable: If the file is missing or not readable
        """
        try:
            with open(self.leases_path, 'r') as f:
                lines = f.read().splitlines()
            logger.debug(f"Read {len(lines)} lines from leases file")
            return lines
        except FileNotFoundError as e:
            logger.error(f"Leases file not found: {self.leases_path}")
            raise LeaseFileUnreadable(self.leases_path, e)
        except PermissionError as e:
            logger.error(f"Permission denied reading leases file: {self.leases_path}")
            raise LeaseFileUnreadable(self.leases_path, e)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading leases file: {str(e)}")
            raise LeaseFileUnreadable(self.leases_path, e)

    def parse_leases(self) -> Dict[str, DhcpdLease]:
        """Read and parse the leases file"""
        lines = self.read_leases_file()
        try:
            leases = parse_lease_lines(lines)
        except Exception as e:
            logger.error(f"Error parsing leases: {str(e)}")
            raise LeaseFileUnreadable(self.leases_path, e)

        logger.info(f"Parsed {len(leases)} leases from {self.leases_path}")
        return leases

    def refresh(self, settings: SettingsModel) -> Dict[str, DhcpdLease]:
        """
        Parse the leases file and publish the table into the settings model

        On failure the previously published table is kept.
        """
        leases = self.parse_leases()
        settings.set_dhcpd_leases(leases)
        return leases


def active_leases(leases: Dict[str, DhcpdLease], now: datetime = None) -> List[DhcpdLease]:
    """Leases whose effective state is active"""
    return [lease for lease in leases.values() if effective_state(lease, now) == 'active']
