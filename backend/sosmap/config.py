"""
Configuration Management System

Centralized configuration loaded from YAML and JSON files in the
config directory. Supports dot-notation access, runtime overrides
and hot reloading.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

logger = logging.getLogger(__name__)


# Defaults used when a key is missing from every config file
DEFAULT_CONFIG: Dict[str, Any] = {
    'map': {
        'clustering': {
            'radiusPx': 50.0,
            'minPoints': 3,
            'maxZoom': 14.0,
        },
        'camera': {
            'overviewZoom': 2.0,
            'finalZoom': 15.0,
            'durationMs': 2000.0,
            'finalPitch': 45.0,
        },
        'viewport': {
            'zoom': 12.0,
            'center': [22.3072, 73.1812],
        },
        'filters': {
            'showSOS': True,
            'showHelpers': True,
            'showResponders': True,
            'showHospitals': True,
            'showUsers': True,
            'showRoutes': True,
            'showClusters': True,
            'showHeatmap': False,
        },
        'sync': {
            'mode': 'poll',
            'socketEvent': 'entities:batch',
            'pollInterval': 5.0,
            'retryBaseDelay': 1.0,
            'retryMaxDelay': 30.0,
            'maxRetries': None,
        },
        'zoneStats': {
            'refreshInterval': 15.0,
        },
        'backend': {
            'baseUrl': 'http://localhost:8001',
            'timeout': 10.0,
        },
        'directions': {
            'cacheTtl': 60,
            'fallbackSpeedKmh': 40.0,
        },
    }
}


class ConfigManager:
    """
    Manage application configuration from YAML and JSON files

    Provides:
    - Load all config files on startup
    - Dot notation access: config.get('map.clustering.radiusPx')
    - Hot reload capability
    - Default values for missing keys
    """

    def __init__(self, config_dir: str = None):
        """
        Initialize configuration manager

        Args:
            config_dir: Path to config directory (default: backend/config)
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = Path(__file__).parent.parent / "config"

        self.configs: Dict[str, Any] = {}
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files from config directory"""
        if not self.config_dir.exists():
            logger.info("[CONFIG] %s not found, using built-in defaults", self.config_dir)
            return

        for yaml_file in sorted(self.config_dir.glob("*.yaml")):
            try:
                with open(yaml_file, 'r') as f:
                    self.configs[yaml_file.stem] = yaml.safe_load(f) or {}
                logger.info("[CONFIG] Loaded: %s", yaml_file.name)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("[CONFIG] Failed to load %s: %s", yaml_file.name, e)

        for json_file in sorted(self.config_dir.glob("*.json")):
            try:
                with open(json_file, 'r') as f:
                    self.configs[json_file.stem] = json.load(f)
                logger.info("[CONFIG] Loaded: %s", json_file.name)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("[CONFIG] Failed to load %s: %s", json_file.name, e)

    @staticmethod
    def _lookup(source: Dict[str, Any], keys) -> Any:
        value = source
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                raise KeyError(k)
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot notation key

        Falls back to the built-in defaults before returning `default`.

        Examples:
            config.get('map.clustering.maxZoom')
            config.get('map.zoneStats.refreshInterval')

        Args:
            key: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        for source in (self.configs, DEFAULT_CONFIG):
            try:
                return self._lookup(source, keys)
            except KeyError:
                continue
        return default

    def get_map_config(self) -> Dict[str, Any]:
        """Get map configuration section merged over defaults"""
        merged = json.loads(json.dumps(DEFAULT_CONFIG['map']))
        _deep_update(merged, self.configs.get('map', {}))
        return merged

    def reload(self):
        """Reload all configuration files"""
        logger.info("[CONFIG] Reloading configuration...")
        self.configs.clear()
        self._load_all_configs()

    def set(self, key: str, value: Any):
        """
        Set a configuration value (runtime only, not persisted)

        Args:
            key: Dot-separated key path
            value: Value to set
        """
        keys = key.split('.')
        config = self.configs

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value


def _deep_update(target: Dict[str, Any], overrides: Dict[str, Any]):
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


# Global configuration instance
config: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the global configuration instance"""
    global config
    if config is None:
        config = ConfigManager()
    return config
