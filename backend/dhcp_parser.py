"""
DHCP Configuration Parser
Converts between dhcpd.conf directive text and the SettingsModel
"""

import re
import os
import shutil
import tempfile
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from errors import MalformedDirective, RequiredFileMissing
from settings_model import SettingsModel, StaticLease

logger = logging.getLogger(__name__)

CONFIG_HEADER = "# dhcpd.conf generated by isc-dhcp-sync"

# Classification order matters: the first matching keyword wins
DIRECTIVE_KEYWORDS = (
    'default-lease-time',
    'max-lease-time',
    'subnet',
    'range',
    'option',
    'host',
    'hardware ethernet',
    'fixed-address',
)


def validate_ip_address(ip: str) -> bool:
    """Validate IP address format"""
    parts = ip.split('.')
    if len(parts) != 4:
        return False
    try:
        return all(0 <= int(part) <= 255 for part in parts)
    except ValueError:
        return False


def validate_mac_address(mac: str) -> bool:
    """Validate MAC address format"""
    pattern = r'^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$'
    return bool(re.match(pattern, mac))


def validate_hostname(hostname: str) -> bool:
    """
    Validate hostname format (RFC 952/1123 compliant)
    - Total length: 1-253 characters
    - Each label: 1-63 characters
    - Labels must start/end with alphanumeric
    - Hyphens allowed in middle of labels
    """
    pattern = r'^(?=.{1,253}$)(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)(?:\.(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?))*$'
    return bool(re.match(pattern, hostname))


def validate_netmask(netmask: str) -> bool:
    """Validate netmask format (contiguous 1s followed by 0s)"""
    if not validate_ip_address(netmask):
        return False
    binary = ''.join(format(int(part), '08b') for part in netmask.split('.'))
    return '01' not in binary


def validate_static_lease(device_name: str, mac_address: str, ip_address: str) -> None:
    """
    Check that a static lease can be written to and read back from dhcpd.conf

    Raises:
        ValueError: Naming the first invalid field
    """
    if not validate_hostname(device_name):
        raise ValueError(f"Invalid hostname: {device_name!r}")
    if not validate_mac_address(mac_address):
        raise ValueError(f"Invalid MAC address: {mac_address!r}")
    if not validate_ip_address(ip_address):
        raise ValueError(f"Invalid IP address: {ip_address!r}")


def clean_line(line: str) -> str:
    """Collapse whitespace runs to one space and trim"""
    return re.sub(r'\s+', ' ', line).strip()


def match_keyword(cleanline: str) -> Optional[str]:
    """Return the directive keyword a cleaned line starts with"""
    for keyword in DIRECTIVE_KEYWORDS:
        if cleanline == keyword:
            return keyword
        if cleanline.startswith(keyword) and cleanline[len(keyword)] in ' ;{':
            return keyword
    return None


def statement_value(cleanline: str, keyword: str) -> str:
    """Text between the keyword and the next ';'"""
    end = cleanline.find(';')
    if end == -1:
        end = len(cleanline)
    return cleanline[len(keyword):end].strip()


def _address_token(token: str) -> Optional[str]:
    token = token.strip().rstrip(';,{').strip()
    return token if validate_ip_address(token) else None


def _positive_int(text: str) -> Optional[int]:
    try:
        value = int(text)
    except ValueError:
        return None
    return value if value > 0 else None


class _HostBuilder:
    """Static lease being assembled from an open host block"""

    def __init__(self, device_name: str):
        self.device_name = device_name
        self.mac_address = ''
        self.ip_address = ''

    def build(self, lease_id: int) -> StaticLease:
        return StaticLease(
            id=str(lease_id),
            device_name=self.device_name,
            mac_address=self.mac_address,
            ip_address=self.ip_address,
        )


def parse_config_lines(lines: Iterable[str]) -> Tuple[Dict, List[StaticLease]]:
    """
    Parse dhcpd.conf lines

    Args:
        lines: Lines of the configuration file, in order

    Returns:
        Tuple of (parsed field values, static leases in file order).
        Only fields whose tokens parsed successfully appear in the values.

    Raises:
        MalformedDirective: If a host field appears outside a host block
    """
    values: Dict = {}
    static_leases: List[StaticLease] = []
    host: Optional[_HostBuilder] = None

    for line_number, line in enumerate(lines, start=1):
        cleanline = clean_line(line)
        if not cleanline or cleanline.startswith('#'):
            continue

        keyword = match_keyword(cleanline)
        tokens = cleanline.split(' ')

        if keyword in ('default-lease-time', 'max-lease-time'):
            value = _positive_int(statement_value(cleanline, keyword))
            if value is not None:
                values[keyword.replace('-', '_')] = value
            else:
                logger.debug(f"Ignoring unparsable {keyword} at line {line_number}")

        elif keyword == 'subnet':
            if len(tokens) > 1:
                subnet = _address_token(tokens[1])
                if subnet:
                    values['subnet'] = subnet
                if len(tokens) > 3 and 'netmask' in tokens[2]:
                    netmask = _address_token(tokens[3])
                    if netmask:
                        values['subnet_mask'] = netmask

        elif keyword == 'range':
            if len(tokens) > 1:
                start = _address_token(tokens[1])
                if start:
                    values['ip_range_start'] = start
            if len(tokens) > 2:
                end = _address_token(tokens[2])
                if end:
                    values['ip_range_end'] = end

        elif keyword == 'option':
            if len(tokens) > 2:
                option_name = tokens[1]
                if option_name == 'routers':
                    gateway = _address_token(tokens[2])
                    if gateway:
                        values['gateway'] = gateway
                elif option_name == 'domain-name-servers':
                    servers = statement_value(cleanline, 'option domain-name-servers').split(',')
                    primary = _address_token(servers[0])
                    if primary:
                        values['primary_dns'] = primary
                    if len(servers) > 1:
                        secondary = _address_token(servers[1])
                        if secondary:
                            values['secondary_dns'] = secondary
                elif option_name == 'subnet-mask':
                    mask = _address_token(tokens[2])
                    if mask:
                        values['host_subnet_mask'] = mask

        elif keyword == 'host':
            if host is not None:
                logger.warning(f"Host block '{host.device_name}' not closed before line {line_number}")
            device_name = tokens[1].rstrip('{').strip() if len(tokens) > 1 else ''
            host = _HostBuilder(device_name)

        elif keyword == 'hardware ethernet':
            if host is None:
                raise MalformedDirective(line, line_number, "hardware ethernet outside host block")
            host.mac_address = statement_value(cleanline, keyword)

        elif keyword == 'fixed-address':
            if host is None:
                raise MalformedDirective(line, line_number, "fixed-address outside host block")
            host.ip_address = statement_value(cleanline, keyword)

        if host is not None and '}' in cleanline:
            static_leases.append(host.build(len(static_leases) + 1))
            host = None

    if host is not None:
        logger.warning(f"Dropping unterminated host block '{host.device_name}'")

    return values, static_leases


def load_config_lines(lines: Iterable[str], settings: SettingsModel) -> List[StaticLease]:
    """
    Parse lines and commit them to the settings model

    The model is left untouched when parsing fails.
    """
    values, static_leases = parse_config_lines(lines)
    settings.apply_parsed_settings(values, static_leases)
    logger.info(f"Loaded DHCP settings with {len(static_leases)} static leases")
    return static_leases


def _host_block(lease: StaticLease) -> List[str]:
    return [
        f"    host {lease.device_name} {{",
        f"        hardware ethernet {lease.mac_address};",
        f"        fixed-address {lease.ip_address};",
        "    }",
    ]


def create_config(settings: SettingsModel) -> str:
    """Render the settings model as dhcpd.conf text"""
    lines = [
        CONFIG_HEADER,
        "one-lease-per-client true;",
        "update-static-leases true;",
        f"default-lease-time {settings.default_lease_time};",
        f"max-lease-time {settings.max_lease_time};",
    ]

    if settings.host_subnet_mask:
        lines.append(f"option subnet-mask {settings.host_subnet_mask};")

    if settings.subnet and settings.subnet_mask:
        lines.append(f"subnet {settings.subnet} netmask {settings.subnet_mask} {{")
        lines.append(f"    range {settings.ip_range_start} {settings.ip_range_end};")

        if settings.gateway:
            lines.append(f"    option routers {settings.gateway};")

        if settings.primary_dns:
            servers = settings.primary_dns
            if settings.secondary_dns:
                servers += f", {settings.secondary_dns}"
            lines.append(f"    option domain-name-servers {servers};")

        for lease in settings.get_static_leases():
            lines.extend(_host_block(lease))

        lines.append("}")

    return '\n'.join(lines) + '\n'


class DHCPParser:
    """Reads and writes ISC DHCP Server configuration files"""

    def __init__(self, config_path: str = "/etc/dhcp/dhcpd.conf", backup_dir: str = None):
        self.config_path = config_path
        self.backup_dir = backup_dir or os.path.join(os.path.dirname(config_path), "backups")

    def create_backup(self) -> Optional[str]:
        """Create a timestamped backup of the current configuration"""
        if not os.path.exists(self.config_path):
            return None

        if not os.path.exists(self.backup_dir):
            os.makedirs(self.backup_dir, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_filename = f"{os.path.basename(self.config_path)}.backup_{timestamp}"
        backup_path = os.path.join(self.backup_dir, backup_filename)

        shutil.copy2(self.config_path, backup_path)
        logger.info(f"Created DHCP config backup: {backup_filename}")
        return backup_path

    def read_config(self, path: str = None) -> str:
        """Read a DHCP configuration file"""
        path = path or self.config_path
        try:
            with open(path, 'r') as f:
                content = f.read()
                logger.debug(f"Read DHCP config file {path}: {len(content)} bytes")
                return content
        except FileNotFoundError:
            logger.error(f"DHCP config file not found: {path}")
            raise RequiredFileMissing(path)
        except PermissionError:
            logger.error(f"Permission denied reading DHCP config: {path}")
            raise PermissionError(f"Permission denied reading {path}")

    def write_config(self, content: str, path: str = None) -> None:
        """Write configuration content atomically"""
        path = path or self.config_path
        try:
            config_dir = os.path.dirname(os.path.abspath(path))
            config_file = os.path.basename(path)

            # Same directory keeps the rename on one filesystem
            fd, temp_path = tempfile.mkstemp(
                dir=config_dir,
                prefix=f'.{config_file}.',
                suffix='.tmp',
                text=True
            )

            try:
                with os.fdopen(fd, 'w') as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())

                if os.path.exists(path):
                    stat_info = os.stat(path)
                    os.chmod(temp_path, stat_info.st_mode)
                    try:
                        os.chown(temp_path, stat_info.st_uid, stat_info.st_gid)
                    except (PermissionError, OSError) as e:
                        # chown may fail if not running as root
                        logger.warning(f"Failed to preserve ownership on {path}: {str(e)}")

                os.replace(temp_path, path)
                logger.info(f"Wrote DHCP config file {path}: {len(content)} bytes")

            except Exception as e:
                if os.path.exists(temp_path):
                    try:
                        os.unlink(temp_path)
                    except OSError:
                        pass
                logger.error(f"Failed to write DHCP config atomically: {str(e)}")
                raise

        except PermissionError:
            logger.error(f"Permission denied writing to DHCP config: {path}")
            raise PermissionError(f"Permission denied writing to {path}")
        except Exception as e:
            logger.error(f"Failed to write DHCP config file: {str(e)}")
            raise IOError(f"Failed to write config file: {str(e)}")

    def load(self, settings: SettingsModel, path: str = None) -> List[StaticLease]:
        """Read a configuration file into the settings model"""
        content = self.read_config(path)
        return load_config_lines(content.splitlines(), settings)

    def save(self, settings: SettingsModel, path: str = None) -> str:
        """Render the settings model and write it out"""
        content = create_config(settings)
        self.write_config(content, path)
        return content

    def validate_config(self, settings: SettingsModel) -> Tuple[bool, str]:
        """Check the rendered configuration for obvious mistakes"""
        content = create_config(settings)

        brace_count = content.count('{') - content.count('}')
        if brace_count != 0:
            logger.warning(f"DHCP config validation failed: Unbalanced braces ({brace_count})")
            return False, f"Unbalanced braces in configuration (difference: {brace_count})"

        leases = settings.get_static_leases()

        for lease in leases:
            try:
                validate_static_lease(lease.device_name, lease.mac_address, lease.ip_address)
            except ValueError as e:
                logger.warning(f"DHCP config validation failed: {str(e)}")
                return False, f"Static lease {lease.id}: {str(e)}"

        names = [lease.device_name for lease in leases]
        if len(names) != len(set(names)):
            logger.warning("DHCP config validation failed: Duplicate hostnames")
            return False, "Duplicate hostnames found in configuration"

        macs = [lease.mac_address.lower() for lease in leases]
        if len(macs) != len(set(macs)):
            logger.warning("DHCP config validation failed: Duplicate MAC addresses")
            return False, "Duplicate MAC addresses found in configuration"

        ips = [lease.ip_address for lease in leases]
        if len(ips) != len(set(ips)):
            logger.warning("DHCP config validation failed: Duplicate IP addresses")
            return False, "Duplicate IP addresses found in configuration"

        if settings.max_lease_time < settings.default_lease_time:
            return False, "max-lease-time must be greater than or equal to default-lease-time"

        logger.info("DHCP config validation passed")
        return True, "Configuration is valid"
