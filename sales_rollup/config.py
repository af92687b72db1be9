import os
import configparser
from pathlib import Path

from sales_rollup.exceptions import ConfigError

DEFAULTS = {
    'DATABASE': {
        'url': 'sqlite:///sales_rollup.db',
        'echo': 'False',
        'pool_size': '10',
        'max_overflow': '20',
        'pool_timeout': '30',
        'pool_recycle': '1800'
    },
    'LOGGING': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'directory': 'logs',
        'max_size_mb': '10',
        'backup_count': '5',
        'console_output': 'True'
    },
    # Reconciliation fan-out of the weekly rollup job
    'BATCH_PROCESS': {
        'max_workers': '4',
        'timeout_minutes': '60'
    },
    'ANALYTICS': {
        'top_n': '10',
        'outlier_threshold': '2.0'
    }
}

class Config:
    """Configuration manager for the Sales Rollup engine.

    Values come from settings.ini in the directory named by
    SALES_ROLLUP_CONFIG_DIR (default ./config). A missing file is written out
    with DEFAULTS; options missing from an existing file fall back to DEFAULTS.
    """

    _instance = None

    def __new__(cls):
        """Singleton pattern implementation."""
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize the configuration if not already initialized."""
        if self._initialized:
            return

        self._config_dir = Path(os.getenv('SALES_ROLLUP_CONFIG_DIR', 'config'))
        self._config_path = self._config_dir / 'settings.ini'
        self._config = configparser.ConfigParser(interpolation=None)
        self._config.read_dict(DEFAULTS)

        if self._config_path.exists():
            self._config.read(self._config_path)
        else:
            self._config_dir.mkdir(parents=True, exist_ok=True)
            with open(self._config_path, 'w') as configfile:
                self._config.write(configfile)

        self._initialized = True

    def get(self, section, key, default=None):
        """Get configuration value."""
        return self._config.get(section, key, fallback=default)

    def _typed(self, getter, section, key, default):
        try:
            return getter(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def get_int(self, section, key, default=None):
        """Get configuration value as integer."""
        return self._typed(self._config.getint, section, key, default)

    def get_float(self, section, key, default=None):
        """Get configuration value as float."""
        return self._typed(self._config.getfloat, section, key, default)

    def get_boolean(self, section, key, default=None):
        """Get configuration value as boolean."""
        return self._typed(self._config.getboolean, section, key, default)

    def get_db_url(self):
        """Get the SQLAlchemy database URL.

        The SALES_ROLLUP_DB_URL environment variable takes precedence over the file.

        Raises:
            ConfigError: if neither source names a database
        """
        url = os.getenv('SALES_ROLLUP_DB_URL') or self.get('DATABASE', 'url')
        if not url:
            raise ConfigError("No database URL configured", details={'path': str(self._config_path)})
        return url

    @property
    def db_config(self):
        """Get database engine configuration."""
        return {
            'url': self.get_db_url(),
            'echo': self.get_boolean('DATABASE', 'echo', False),
            'pool_size': self.get_int('DATABASE', 'pool_size', 10),
            'max_overflow': self.get_int('DATABASE', 'max_overflow', 20),
            'pool_timeout': self.get_int('DATABASE', 'pool_timeout', 30),
            'pool_recycle': self.get_int('DATABASE', 'pool_recycle', 1800)
        }

    @property
    def log_config(self):
        """Get logging configuration."""
        return {
            'level': self.get('LOGGING', 'level', 'INFO'),
            'format': self.get('LOGGING', 'format'),
            'directory': self.get('LOGGING', 'directory', 'logs'),
            'max_size_mb': self.get_int('LOGGING', 'max_size_mb', 10),
            'backup_count': self.get_int('LOGGING', 'backup_count', 5),
            'console_output': self.get_boolean('LOGGING', 'console_output', True)
        }

    @property
    def batch_config(self):
        """Get weekly rollup job configuration."""
        return {
            'max_workers': self.get_int('BATCH_PROCESS', 'max_workers', 4),
            'timeout_minutes': self.get_int('BATCH_PROCESS', 'timeout_minutes', 60)
        }

    @property
    def analytics_config(self):
        """Get analytics defaults."""
        return {
            'top_n': self.get_int('ANALYTICS', 'top_n', 10),
            'outlier_threshold': self.get_float('ANALYTICS', 'outlier_threshold', 2.0)
        }

# Global config instance
config = Config()
