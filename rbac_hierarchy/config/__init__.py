import logging
import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Server configuration settings."""
    host: str = "localhost"
    port: int = 8000
    debug: bool = False
    log_level: str = "info"
    access_log: bool = True


class LoggingConfig(BaseModel):
    """Logging output configuration."""
    format: str = "text"
    file: Optional[str] = None


class InheritanceConfig(BaseModel):
    """Inheritance resolution settings."""
    max_inheritance_depth: int = Field(default=5, ge=1)


class DelegationConfig(BaseModel):
    """Delegation policy settings."""
    max_chain_depth: int = Field(default=3, ge=1)
    default_max_depth: int = Field(default=1, ge=1)
    default_ttl_days: Optional[int] = Field(default=30, ge=1)


class EscalationConfig(BaseModel):
    """Privilege escalation ceiling settings."""
    enabled: bool = True
    senior_window: int = Field(default=2, ge=1)


class EngineConfig(BaseModel):
    """Main engine configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    inheritance: InheritanceConfig = Field(default_factory=InheritanceConfig)
    delegation: DelegationConfig = Field(default_factory=DelegationConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)

    # Raw configuration for complex nested structures
    raw_config: Dict[str, Any] = Field(default_factory=dict)


class ConfigLoader:
    """Configuration loader for YAML files with environment-specific overrides."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize the configuration loader.

        Args:
            config_dir: Directory containing configuration files.
                       Defaults to the config directory at the project root.
        """
        if config_dir is None:
            current_dir = Path(__file__).parent.parent.parent
            self.config_dir = current_dir / "config"
        else:
            self.config_dir = Path(config_dir)

    def load_config(self, environment: Optional[str] = None) -> EngineConfig:
        """Load configuration for the specified environment.

        Args:
            environment: Environment name (development, production, etc.).
                        If None, will try to detect from ENVIRONMENT variable.

        Returns:
            Loaded and validated configuration.
        """
        if environment is None:
            environment = os.getenv("ENVIRONMENT", "development")

        config_data = self._load_base_config()

        env_config = self._load_environment_config(environment)
        if env_config:
            config_data = self._merge_configs(config_data, env_config)

        config_data = self._substitute_env_vars(config_data)

        return self._create_engine_config(config_data)

    def _load_base_config(self) -> Dict[str, Any]:
        """Load the base engine configuration."""
        engine_config_path = self.config_dir / "engine.yaml"
        if engine_config_path.exists():
            return self._load_yaml_file(engine_config_path)
        return {}

    def _load_environment_config(self, environment: str) -> Optional[Dict[str, Any]]:
        """Load environment-specific configuration."""
        env_config_path = self.config_dir / f"{environment}.yaml"
        if env_config_path.exists():
            return self._load_yaml_file(env_config_path)
        return None

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """Load and parse a YAML file."""
        try:
            with open(file_path, 'r') as file:
                return yaml.safe_load(file) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config file {file_path}: {e}")
            return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _substitute_env_vars(self, config: Any) -> Any:
        """Substitute environment variables in configuration values."""
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_string_env_vars(config)
        else:
            return config

    def _substitute_string_env_vars(self, value: str) -> str:
        """Substitute environment variables in a string value."""
        # Handle ${VAR_NAME} and ${VAR_NAME:default} formats
        def replace_env_var(match):
            var_spec = match.group(1)
            if ':' in var_spec:
                var_name, default_value = var_spec.split(':', 1)
                return os.getenv(var_name, default_value)
            else:
                return os.getenv(var_spec, match.group(0))

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, value)

    def _create_engine_config(self, config_data: Dict[str, Any]) -> EngineConfig:
        """Create an EngineConfig object from configuration data."""
        engine_data = config_data.get("engine", {})

        return EngineConfig(
            server=ServerConfig(**config_data.get("server", {})),
            logging=LoggingConfig(**config_data.get("logging", {})),
            inheritance=InheritanceConfig(**engine_data.get("inheritance", {})),
            delegation=DelegationConfig(**engine_data.get("delegation", {})),
            escalation=EscalationConfig(**engine_data.get("escalation", {})),
            raw_config=config_data
        )


# Global configuration instance
_config_loader = ConfigLoader()
_engine_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the current engine configuration."""
    global _engine_config
    if _engine_config is None:
        _engine_config = _config_loader.load_config()
    return _engine_config


def reload_config(environment: Optional[str] = None) -> EngineConfig:
    """Reload the engine configuration."""
    global _engine_config
    _engine_config = _config_loader.load_config(environment)
    return _engine_config


def get_catalog_config() -> Dict[str, Any]:
    """Load catalog seed records from catalog.yaml."""
    catalog_path = _config_loader.config_dir / "catalog.yaml"
    if catalog_path.exists():
        return _config_loader._load_yaml_file(catalog_path)
    return {"tenants": {}}
