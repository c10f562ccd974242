import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class ConfigManager:
    """Reads and updates the JSON configuration file (config.json by default)"""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        # Relative to the current working directory unless a path is given
        self.config_file = Path(config_file) if config_file else Path("config.json")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration file; a missing or unreadable file yields an empty config"""
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error loading config {self.config_file}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save_config(self, config: Dict[str, Any]) -> None:
        with open(self.config_file, "w") as f:
            json.dump(config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration item by dotted key"""
        value = self.config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration item by dotted key and persist the file"""
        keys = key.split(".")
        config = self.config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value
        self._save_config(self.config)

    def list_config(self) -> Dict[str, Any]:
        """List all configuration items"""
        return self.config
