"""
Gunicorn Configuration for ISC DHCP Sync Manager
"""

import logging
from config_manager import ConfigManager, EngineConfig

wsgi_app = "app:create_app()"

# Server socket
bind = "127.0.0.1:5000"

# One process owns the settings model and the lease watcher;
# requests are served by threads inside it
workers = 1
worker_class = "gthread"
threads = 4
# Service commands may take up to COMMAND_TIMEOUT
timeout = 300

# Logging
accesslog = "-"  # Log to stdout
errorlog = "-"   # Log to stderr


def on_starting(server):
    """
    Called once when Gunicorn master process starts.
    Logs the effective engine configuration.
    """
    logger = logging.getLogger('dhcp-sync-startup')
    try:
        config = ConfigManager().load()
        engine = EngineConfig.from_dict(config)

        logging.basicConfig(
            level=getattr(logging, config.get('LOG_LEVEL', 'INFO').upper(), logging.INFO),
            format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        logger.info("=" * 60)
        logger.info("ISC DHCP Sync Manager starting")
        logger.info(f"Bind: {bind}")
        logger.info(f"Worker class: {worker_class} ({threads} threads)")
        logger.info(f"Log path: {config.get('LOGGING_PATH')}")
        logger.info(f"DHCP config path: {engine.config_path}")
        logger.info(f"DHCP leases path: {engine.leases_path}")
        logger.info(f"Service defaults path: {engine.defaults_path}")
        logger.info(f"Staging directory: {engine.staging_dir}")
        logger.info(f"Service name: {engine.service_name}")
        logger.info(f"Command timeout: {engine.command_timeout}s")
        logger.info(f"Watch leases: {engine.watch_leases}")
        logger.info("=" * 60)
    except (OSError, ValueError) as e:
        # Fallback to basic logging if config fails
        logging.basicConfig(level=logging.INFO)
        logging.error(f"Failed to load configuration during startup: {e}")
        # Don't exit - create_app reports the error again
