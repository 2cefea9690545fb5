"""
ISC DHCP Sync Manager Flask Application
Provides REST API for the DHCP settings model, leases and service lifecycle
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, request, jsonify
from flask_cors import CORS
from config_manager import ConfigManager, EngineConfig
from dhcp_parser import create_config, validate_static_lease
from errors import (CommandTimedOut, DhcpManagerError, LeaseFileUnreadable, MalformedDirective,
                    RequiredFileMissing, ServiceStateError, UnknownServiceStatus,
                    UnsupportedPlatform)
from lease_parser import LeaseParser, active_leases, effective_state
from lease_watcher import watch_leases
from service_controller import ServiceController
from settings_model import SettingsModel, StaticLease

# Most specific first
ERROR_STATUS = (
    (MalformedDirective, 400),
    (RequiredFileMissing, 404),
    (ServiceStateError, 409),
    (UnsupportedPlatform, 501),
    (UnknownServiceStatus, 502),
    (LeaseFileUnreadable, 503),
    (CommandTimedOut, 504),
)

SERVICE_ACTIONS = ('install', 'start', 'stop', 'restart')


def setup_logging(app):
    """Configure application logging"""
    log_level = app.config.get('LOG_LEVEL', 'INFO').upper()
    log_path = app.config.get('LOGGING_PATH', '/var/log/isc-dhcp-sync')

    numeric_level = getattr(logging, log_level, logging.INFO)

    if not os.path.exists(log_path):
        try:
            os.makedirs(log_path, exist_ok=True)
        except PermissionError:
            # Fall back to current directory if we can't create log directory
            log_path = '.'

    log_format = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Rotating file handler (10MB max, keep 5 backups)
    log_file = os.path.join(log_path, 'dhcp-sync.log')
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(log_format)

    # Console handler for systemd journal
    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(log_format)

    # Flask, werkzeug and the engine modules all propagate to the root logger
    app.logger.setLevel(numeric_level)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def initialise_engine(controller: ServiceController, engine_config: EngineConfig, logger) -> None:
    """Detect the host and pull the current server state into the settings model"""
    controller.detect_host()
    if not controller.settings.os_is_unix:
        logger.warning("Not a Unix host - service management disabled")
        return

    try:
        controller.refresh_status()
    except DhcpManagerError as e:
        logger.error(f"Failed to query DHCP server status: {str(e)}")

    if os.path.exists(engine_config.config_path):
        try:
            controller.load_settings_file().result()
        except (DhcpManagerError, OSError) as e:
            logger.error(f"Failed to load DHCP config: {str(e)}")

    if controller.settings.is_dhcp_server_installed:
        try:
            controller.load_selected_interface()
        except DhcpManagerError as e:
            logger.error(f"Failed to read selected interface: {str(e)}")


def create_app(config_dict=None, controller=None, config_manager=None):
    """
    Application factory

    Args:
        config_dict: Raw configuration, read through ConfigManager when omitted
        controller: Pre-built ServiceController; when omitted one is created,
            initialised from the host and the lease watcher is started
        config_manager: ConfigManager backing the app-config endpoints
    """
    app = Flask(__name__)

    config_manager = config_manager or ConfigManager()
    if config_dict is None:
        config_dict = config_manager.load()

    for key, value in config_dict.items():
        app.config[key] = value

    app.config.setdefault('API_PREFIX', '/api')
    app.config['DEBUG'] = str(app.config.get('FLASK_DEBUG', 'false')).lower() == 'true'
    app.config['CORS_ORIGINS'] = str(app.config.get('CORS_ORIGINS', '*')).split(',')

    CORS(app, origins=app.config['CORS_ORIGINS'])

    setup_logging(app)

    engine_config = EngineConfig.from_dict(config_dict)
    lease_watcher = None

    if controller is None:
        controller = ServiceController(SettingsModel(), engine_config)
        initialise_engine(controller, engine_config, app.logger)
        if engine_config.watch_leases and controller.settings.os_is_unix:
            try:
                controller.ensure_leases_file()
                lease_watcher = watch_leases(controller.settings, engine_config.leases_path)
            except DhcpManagerError as e:
                app.logger.error(f"Failed to watch leases file: {str(e)}")

    settings = controller.settings
    app.extensions['dhcp_controller'] = controller
    app.extensions['lease_watcher'] = lease_watcher

    app.logger.debug(f"Worker process {os.getpid()} initialized")

    prefix = app.config['API_PREFIX']

    @app.errorhandler(DhcpManagerError)
    def manager_error(error):
        status = next((code for cls, code in ERROR_STATUS if isinstance(error, cls)), 500)
        app.logger.warning(f"{type(error).__name__}: {request.method} {request.path} - {str(error)}")
        body = {'error': type(error).__name__, 'message': str(error)}
        if isinstance(error, (UnknownServiceStatus, ServiceStateError)):
            body['state'] = str(controller.state)
        return jsonify(body), status

    @app.errorhandler(400)
    def bad_request(error):
        app.logger.warning(f"Bad request: {request.method} {request.path} - {str(error)}")
        return jsonify({'error': 'Bad request', 'message': str(error)}), 400

    @app.errorhandler(404)
    def not_found(error):
        app.logger.debug(f"Not found: {request.method} {request.path}")
        return jsonify({'error': 'Not found', 'message': str(error)}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Internal server error: {request.method} {request.path} - {str(error)}", exc_info=True)
        return jsonify({'error': 'Internal server error', 'message': str(error)}), 500

    def service_status():
        return {
            'state': str(controller.state),
            'installed': settings.is_dhcp_server_installed,
            'running': settings.is_dhcp_server_running,
        }

    @app.route('/')
    @app.route(f"{prefix}/")
    def index():
        """Health check endpoint"""
        return jsonify({
            'status': 'running',
            'service': 'ISC DHCP Sync Manager',
            'version': '1.0.0'
        })

    # Settings endpoints
    @app.route(f"{prefix}/settings", methods=['GET'])
    def get_settings():
        """Get the current DHCP settings"""
        return jsonify(settings.to_dict())

    @app.route(f"{prefix}/settings", methods=['PUT'])
    def update_settings():
        """Update DHCP settings in memory"""
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        try:
            settings.update_from_dict(data, validate_lease=validate_static_lease)
        except ValueError as e:
            app.logger.warning(f"Rejected settings update: {str(e)}")
            return jsonify({'error': 'Invalid settings', 'message': str(e)}), 400

        is_valid, message = controller.parser.validate_config(settings)
        app.logger.info("Updated DHCP settings")
        return jsonify({'settings': settings.to_dict(), 'valid': is_valid, 'message': message})

    @app.route(f"{prefix}/config/preview", methods=['GET'])
    def preview_config():
        """Render the settings as dhcpd.conf text"""
        return jsonify({'content': create_config(settings)})

    @app.route(f"{prefix}/config/load", methods=['POST'])
    def load_config():
        """Reload settings from the live dhcpd.conf"""
        controller.load_settings_file().result()
        app.logger.info(f"Reloaded DHCP settings from {engine_config.config_path}")
        return jsonify(settings.to_dict())

    @app.route(f"{prefix}/config/export", methods=['POST'])
    def export_config():
        """Write the rendered settings to another file"""
        data = request.get_json(silent=True) or {}
        path = str(data.get('path', '')).strip()
        if not path.startswith('/'):
            return jsonify({'error': 'Invalid path', 'message': 'path must be absolute'}), 400

        controller.save_settings_file(path).result()
        app.logger.info(f"Exported DHCP settings to {path}")
        return jsonify({'path': path})

    # Static lease endpoints
    @app.route(f"{prefix}/static-leases", methods=['POST'])
    def add_static_lease():
        """Add a static lease"""
        data = request.get_json(silent=True) or {}
        device_name = str(data.get('device_name', '')).strip()
        mac_address = str(data.get('mac_address', '')).strip()
        ip_address = str(data.get('ip_address', '')).strip()

        try:
            validate_static_lease(device_name, mac_address, ip_address)
        except ValueError as e:
            app.logger.warning(f"Rejected static lease: {str(e)}")
            return jsonify({'error': 'Invalid static lease', 'message': str(e)}), 400

        lease = settings.add_static_lease(StaticLease(
            device_name=device_name, mac_address=mac_address, ip_address=ip_address))
        app.logger.info(f"Added static lease {lease.id} for {device_name}")
        return jsonify(lease.to_dict()), 201

    @app.route(f"{prefix}/static-leases/<lease_id>", methods=['DELETE'])
    def delete_static_lease(lease_id):
        """Remove a static lease by id"""
        if not settings.remove_static_lease(lease_id):
            return jsonify({'error': 'Static lease not found'}), 404
        app.logger.info(f"Removed static lease {lease_id}")
        return jsonify({'message': f'Static lease {lease_id} removed'})

    @app.route(f"{prefix}/apply", methods=['POST'])
    def apply_config():
        """Install settings as the live configuration"""
        is_valid, message = controller.parser.validate_config(settings)
        if not is_valid:
            app.logger.warning(f"Apply blocked - config validation failed: {message}")
            return jsonify({'error': 'Configuration validation failed', 'message': message}), 400

        controller.apply_configuration()
        return jsonify(service_status())

    # Lease endpoints
    def current_leases():
        if lease_watcher is None:
            LeaseParser(engine_config.leases_path).refresh(settings)
        return settings.get_dhcpd_leases()

    def lease_dict(lease):
        return {**lease.to_dict(), 'state': effective_state(lease)}

    @app.route(f"{prefix}/leases", methods=['GET'])
    def get_leases():
        """Get all DHCP leases, one per hardware address"""
        leases = current_leases()
        app.logger.debug(f"Retrieved {len(leases)} leases")
        return jsonify([lease_dict(lease) for lease in leases.values()])

    @app.route(f"{prefix}/leases/active", methods=['GET'])
    def get_active_leases():
        """Get only active DHCP leases"""
        leases = active_leases(current_leases())
        app.logger.debug(f"Retrieved {len(leases)} active leases")
        return jsonify([lease_dict(lease) for lease in leases])

    # Service endpoints
    @app.route(f"{prefix}/service/status", methods=['GET'])
    def get_service_status():
        """Query install and running status of the DHCP server"""
        controller.refresh_status()
        return jsonify(service_status())

    @app.route(f"{prefix}/service/<action>", methods=['POST'])
    def service_action(action):
        """Install, start, stop or restart the DHCP server"""
        if action not in SERVICE_ACTIONS:
            app.logger.warning(f"Invalid service action: {action}")
            return jsonify({
                'error': 'Invalid service action',
                'message': f'Action must be one of: {", ".join(SERVICE_ACTIONS)}'
            }), 400

        app.logger.info(f"Service action requested: {action}")
        getattr(controller, action)()
        return jsonify(service_status())

    # Interface endpoints
    @app.route(f"{prefix}/interface", methods=['GET'])
    def get_interface():
        selection = settings.selected_interface
        return jsonify({'name': selection.name if selection else None})

    @app.route(f"{prefix}/interface", methods=['PUT'])
    def set_interface():
        """Select the interface the DHCP server binds to"""
        data = request.get_json(silent=True) or {}
        name = str(data.get('name', '')).strip()
        if not name or any(ch.isspace() or ch in '"\'' for ch in name):
            return jsonify({'error': 'Invalid interface name'}), 400

        settings.select_interface(name)
        app.logger.info(f"Selected interface {name}")
        if data.get('apply'):
            controller.apply_selected_interface()
        return jsonify({'name': name})

    @app.route(f"{prefix}/host-address", methods=['POST'])
    def set_host_address():
        """Assign a static IPv4 address to a host interface"""
        data = request.get_json(silent=True) or {}
        interface = str(data.get('interface', '')).strip()
        if not interface or any(ch.isspace() for ch in interface):
            return jsonify({'error': 'Invalid interface name'}), 400

        ip_address = str(data.get('ip_address', '')).strip()
        netmask = str(data.get('netmask', '')).strip()
        try:
            controller.set_host_address(interface, ip_address, netmask)
        except ValueError as e:
            app.logger.warning(f"Rejected host address: {str(e)}")
            return jsonify({'error': 'Invalid address', 'message': str(e)}), 400
        return jsonify({'interface': interface, 'ip_address': ip_address, 'netmask': netmask})

    # App configuration endpoints
    @app.route(f"{prefix}/app-config", methods=['GET'])
    def get_app_config():
        """Get the effective application configuration"""
        config = config_manager.load()
        app.logger.debug(f"Retrieved app configuration ({len(config)} settings)")
        return jsonify(config)

    @app.route(f"{prefix}/app-config/schema", methods=['GET'])
    def get_app_config_schema():
        """Get configuration schema for frontend form generation"""
        return jsonify(config_manager.get_schema())

    @app.route(f"{prefix}/app-config", methods=['PUT'])
    def update_app_config():
        """Update application configuration; takes effect on restart"""
        data = request.get_json(silent=True)
        if not isinstance(data, dict) or not data:
            app.logger.warning("Update app config request with no JSON data")
            return jsonify({'error': 'No JSON data provided'}), 400

        properties = config_manager.get_schema().get('properties', {})
        updated_config = config_manager.load()
        modified_fields = []
        for key, value in data.items():
            if key in properties:
                updated_config[key] = str(value)
                modified_fields.append(key)

        errors = config_manager.validate_config(updated_config)
        if errors:
            app.logger.warning(f"App config validation failed: {'; '.join(errors)}")
            return jsonify({'error': 'Validation failed', 'message': '; '.join(errors)}), 400

        config_manager.write_config(updated_config)
        app.logger.info(f"Updated app configuration ({len(modified_fields)} fields: {', '.join(modified_fields)})")
        return jsonify(config_manager.read_config())

    return app


def main():
    """Run the application"""
    app = create_app()

    # Production should use gunicorn with gunicorn.conf.py
    if app.config['DEBUG']:
        app.run(host='0.0.0.0', port=5000, debug=True, use_reloader=False)
    else:
        app.run(host='0.0.0.0', port=5000)


if __name__ == '__main__':
    main()
