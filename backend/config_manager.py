"""
Configuration Manager for ISC DHCP Sync Manager
Handles reading, writing, and validating application configuration
Field definitions are built in and may be overridden by a JSON schema file
"""

import os
import json
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional

DEFAULT_CONFIG_PATH = '/etc/isc-dhcp-sync/config.conf'

DEFAULT_SCHEMA: Dict[str, Any] = {
    'required': ['DHCP_CONFIG_PATH', 'DHCP_SERVICE_NAME'],
    'properties': {
        'DHCP_CONFIG_PATH': {
            'type': 'string', 'format': 'path', 'section': 'DHCP Server', 'order': 1,
            'default': '/etc/dhcp/dhcpd.conf',
            'description': 'Live dhcpd.conf used by the DHCP server',
        },
        'DHCP_LEASES_PATH': {
            'type': 'string', 'format': 'path', 'section': 'DHCP Server', 'order': 2,
            'default': '/var/lib/dhcp/dhcpd.leases',
            'description': 'Lease database written by the DHCP server',
        },
        'DHCP_DEFAULTS_PATH': {
            'type': 'string', 'format': 'path', 'section': 'DHCP Server', 'order': 3,
            'default': '/etc/default/isc-dhcp-server',
            'description': 'Service defaults file holding INTERFACES',
        },
        'DHCP_SERVICE_NAME': {
            'type': 'string', 'section': 'DHCP Server', 'order': 4,
            'default': 'isc-dhcp-server',
            'description': 'Service and package name of the DHCP server',
        },
        'STAGING_DIR': {
            'type': 'string', 'format': 'path', 'section': 'DHCP Server', 'order': 5,
            'description': 'Directory for staged files, defaults to the working directory',
        },
        'PRIVILEGE_COMMAND': {
            'type': 'string', 'format': 'path', 'section': 'Commands', 'order': 10,
            'default': '/usr/bin/sudo',
            'description': 'Helper used to run privileged commands',
        },
        'COMMAND_TIMEOUT': {
            'type': 'integer', 'minimum': 1, 'maximum': 3600, 'section': 'Commands', 'order': 11,
            'default': '120',
            'description': 'Seconds to wait for each system command',
        },
        'WATCH_LEASES': {
            'type': 'boolean', 'section': 'Commands', 'order': 12,
            'default': 'true',
            'description': 'Re-read the leases file whenever it changes',
        },
        'LOG_LEVEL': {
            'type': 'string', 'enum': ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
            'section': 'Logging', 'order': 20, 'default': 'INFO',
            'description': 'Application log level',
        },
        'LOGGING_PATH': {
            'type': 'string', 'format': 'path', 'section': 'Logging', 'order': 21,
            'default': '/var/log/isc-dhcp-sync',
            'description': 'Directory for log files',
        },
        'API_PREFIX': {
            'type': 'string', 'section': 'API', 'order': 30, 'default': '/api',
            'description': 'URL prefix of the REST API',
        },
        'CORS_ORIGINS': {
            'type': 'string', 'section': 'API', 'order': 31, 'default': '*',
            'description': 'Comma separated list of allowed origins',
        },
        'FLASK_DEBUG': {
            'type': 'boolean', 'section': 'API', 'order': 32, 'default': 'false',
            'description': 'Run the development server in debug mode',
        },
    },
}


class ConfigManager:
    """Manages application configuration file"""

    def __init__(self, config_path=DEFAULT_CONFIG_PATH, schema_path=None):
        self.config_path = config_path
        self.schema_path = schema_path
        self.schema = self._load_schema()

    def _load_schema(self) -> Dict[str, Any]:
        """Load configuration schema, falling back to the built-in one"""
        if self.schema_path is None:
            return DEFAULT_SCHEMA
        try:
            with open(self.schema_path, 'r') as f:
                return json.load(f)
        except FileNotFoundError:
            raise FileNotFoundError(f"Schema file not found: {self.schema_path}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid schema JSON: {e}")

    def defaults(self) -> Dict[str, str]:
        """Default values declared by the schema"""
        return {
            key: props['default']
            for key, props in self.schema.get('properties', {}).items()
            if 'default' in props
        }

    def read_config(self) -> Dict[str, str]:
        """Read configuration file and return as dictionary"""
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        config = {}

        try:
            with open(self.config_path, 'r') as f:
                for line in f:
                    line = line.strip()

                    # Skip empty lines and comments
                    if not line or line.startswith('#'):
                        continue

                    # Parse KEY=VALUE
                    if '=' in line:
                        key, value = line.split('=', 1)
                        key = key.strip()
                        value = value.strip()

                        if key:
                            config[key] = value

            return config

        except Exception as e:
            raise IOError(f"Failed to read config file: {str(e)}")

    def load(self) -> Dict[str, str]:
        """Schema defaults overlaid with the config file, if present"""
        config = self.defaults()
        if os.path.exists(self.config_path):
            config.update(self.read_config())
        errors = self.validate_config(config)
        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")
        return config

    def write_config(self, config: Dict[str, str]) -> None:
        """Write configuration to file atomically"""
        try:
            errors = self.validate_config(config)
            if errors:
                raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

            config_dir = os.path.dirname(os.path.abspath(self.config_path))
            config_file = os.path.basename(self.config_path)

            fd, temp_path = tempfile.mkstemp(
                dir=config_dir,
                prefix=f'.{config_file}.',
                suffix='.tmp',
                text=True
            )

            try:
                sections = {}
                for key, props in self.schema.get('properties', {}).items():
                    section = props.get('section', 'Other')
                    order = props.get('order', 999)
                    sections.setdefault(section, []).append((order, key, props))

                # Sort sections by first item's order
                sorted_sections = sorted(sections.items(), key=lambda x: min(item[0] for item in x[1]))

                with os.fdopen(fd, 'w') as f:
                    f.write("# ISC DHCP Sync Manager Configuration\n")

                    for section_name, items in sorted_sections:
                        f.write(f"\n# {section_name}\n")

                        for order, key, props in sorted(items, key=lambda x: x[0]):
                            if key in config:
                                description = props.get('description', '')
                                if description:
                                    f.write(f"# {description}\n")

                                f.write(f"{key}={config[key]}\n")

                    f.flush()
                    os.fsync(f.fileno())

                if os.path.exists(self.config_path):
                    stat_info = os.stat(self.config_path)
                    os.chmod(temp_path, stat_info.st_mode)
                    try:
                        os.chown(temp_path, stat_info.st_uid, stat_info.st_gid)
                    except (PermissionError, OSError):
                        pass

                os.replace(temp_path, self.config_path)

            except Exception:
                if os.path.exists(temp_path):
                    try:
                        os.unlink(temp_path)
                    except OSError:
                        pass
                raise

        except PermissionError:
            raise PermissionError(f"Permission denied writing to {self.config_path}")
        except ValueError:
            raise
        except Exception as e:
            raise IOError(f"Failed to write config file: {str(e)}")

    def validate_config(self, config: Dict[str, str]) -> List[str]:
        """Validate configuration against schema, return list of errors"""
        errors = []
        properties = self.schema.get('properties', {})
        required = self.schema.get('required', [])

        for key in required:
            if key not in config or not config[key]:
                errors.append(f"{key} is required")

        for key, value in config.items():
            if key not in properties:
                # Unknown field - warning but not error
                continue

            props = properties[key]
            field_type = props.get('type')

            if field_type == 'integer':
                try:
                    int_val = int(value)

                    if 'minimum' in props and int_val < props['minimum']:
                        errors.append(f"{key} must be at least {props['minimum']}")

                    if 'maximum' in props and int_val > props['maximum']:
                        errors.append(f"{key} must be at most {props['maximum']}")

                except ValueError:
                    errors.append(f"{key} must be an integer")

            elif field_type == 'boolean':
                if str(value).lower() not in ['true', 'false']:
                    errors.append(f"{key} must be 'true' or 'false'")

            elif field_type == 'string':
                if props.get('format') == 'path' and value:
                    if not value.startswith('/'):
                        errors.append(f"{key} must be an absolute path (start with /)")

                if 'enum' in props:
                    if value not in props['enum']:
                        valid_values = ', '.join(props['enum'])
                        errors.append(f"{key} must be one of: {valid_values}")

        return errors

    def get_schema(self) -> Dict[str, Any]:
        """Get configuration schema for frontend"""
        return self.schema


def _as_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).lower() == 'true'


@dataclass
class EngineConfig:
    """Typed view of the settings the DHCP engine needs"""
    config_path: str = '/etc/dhcp/dhcpd.conf'
    leases_path: str = '/var/lib/dhcp/dhcpd.leases'
    defaults_path: str = '/etc/default/isc-dhcp-server'
    service_name: str = 'isc-dhcp-server'
    staging_dir: str = field(default_factory=os.getcwd)
    privilege_command: Optional[str] = '/usr/bin/sudo'
    command_timeout: float = 120
    watch_leases: bool = True

    @property
    def package_name(self) -> str:
        return self.service_name

    @classmethod
    def from_dict(cls, config: Dict[str, str]) -> 'EngineConfig':
        defaults = cls()
        return cls(
            config_path=config.get('DHCP_CONFIG_PATH') or defaults.config_path,
            leases_path=config.get('DHCP_LEASES_PATH') or defaults.leases_path,
            defaults_path=config.get('DHCP_DEFAULTS_PATH') or defaults.defaults_path,
            service_name=config.get('DHCP_SERVICE_NAME') or defaults.service_name,
            staging_dir=config.get('STAGING_DIR') or defaults.staging_dir,
            # An empty PRIVILEGE_COMMAND runs commands directly
            privilege_command=config.get('PRIVILEGE_COMMAND', defaults.privilege_command) or None,
            command_timeout=float(config.get('COMMAND_TIMEOUT') or defaults.command_timeout),
            watch_leases=_as_bool(config.get('WATCH_LEASES'), defaults.watch_leases),
        )
