"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""
    
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")
    
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    
    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]
    
    # Backends
    storage_backend: str = "memory"    # memory | supabase
    audit_backend: str = "logging"     # logging | redis
    rate_limit_backend: str = "memory"  # memory | redis
    executor_backend: str = "dry_run"
    embedded_worker: bool = False      # run the tick loop inside the API process
    
    # Redis (audit events, shared rate-limit usage)
    redis_url: str = "redis://localhost:6379"
    
    # Supabase (persistence)
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    
    # Message merge fields supplied by the operator
    recruiter_name: str = ""
    qualify_link: str = ""


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""
    
    def __init__(self, env: Optional[str] = None, config_dir: Optional[Path] = None):
        self.env = env or os.getenv("ENVIRONMENT", "development")
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()
    
    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)
        
        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)
        
        self._substitute_env_vars(self._config)
    
    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}
    
    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)
    
    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value
    
    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("orchestrator.tick_interval_seconds") -> 30
        """
        keys = key_path.split('.')
        value = self._config
        
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        
        return value
    
    def section(self, name: str) -> Dict[str, Any]:
        """Get a whole top-level section as a dict (empty if missing)"""
        value = self._config.get(name)
        return dict(value) if isinstance(value, dict) else {}


@lru_cache()
def get_settings() -> Settings:
    """Settings from the current environment, built once per process."""
    return Settings()
