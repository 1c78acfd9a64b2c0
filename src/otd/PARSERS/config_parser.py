"""
Parsers for demo configuration: YAML file, .env file and OTD_* environment variables.
"""
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..errors import ConfigError
from ..MODELS.demo_config import DemoConfig

ENV_PREFIX = "OTD_"
LIST_FIELDS = ("demo_values_files", "backend_values_files", "required_tools")


class ConfigParser:
    """
    Builds a DemoConfig from layered sources. Later sources win:
    defaults, YAML file, .env file, process environment, explicit overrides.
    """
    def __init__(self, env_file: Optional[str] = ".env", environ: Optional[Dict[str, str]] = None):
        """
        :param env_file: Optional .env file; ignored when it does not exist.
        :param environ: Environment to read OTD_* keys from; the process environment by default.
        """
        self.env_file = env_file
        self.environ = dict(os.environ) if environ is None else environ

    def parse(self, config_path: Optional[str] = None, **overrides: Any) -> DemoConfig:
        """
        Parses the configuration.

        :param config_path: Optional YAML file with DemoConfig fields.
        :param overrides: Explicit values, typically CLI options; None values are skipped.
        :return: Validated configuration.
        :raises ConfigError: If a file cannot be read or a value is invalid.
        """
        data: Dict[str, Any] = {}
        if config_path:
            data.update(self._load_yaml(config_path))
        data.update(self._load_env())
        data.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return DemoConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration:\n{e}") from e

    @staticmethod
    def _load_yaml(config_path: str) -> Dict[str, Any]:
        if not os.path.exists(config_path):
            raise ConfigError(f"Configuration file {config_path} not found")
        with open(config_path, 'r') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {config_path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a mapping of settings")
        return data

    def _load_env(self) -> Dict[str, Any]:
        values: Dict[str, Optional[str]] = {}
        if self.env_file and os.path.exists(self.env_file):
            values.update(dotenv_values(self.env_file))
        values.update(self.environ)

        settings: Dict[str, Any] = {}
        for key, value in values.items():
            if not key.startswith(ENV_PREFIX) or value is None:
                continue
            field = key[len(ENV_PREFIX):].lower()
            if field not in DemoConfig.model_fields:
                continue
            if field in LIST_FIELDS:
                settings[field] = [item.strip() for item in value.split(",") if item.strip()]
            else:
                settings[field] = value
        return settings
