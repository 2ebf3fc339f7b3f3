"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    'confluence': {
        'base_url': '',
        'email': '',
        'api_token': '',
        'timeout': 60,
        'max_retries': 3,
        'verify_ssl': True
    },
    'conversion': {
        'image_folder': 'assets',
        'download_images': True,
        'include_frontmatter': True
    },
    'export': {
        'output_directory': './output',
        'filename_template': ''
    },
    'logging': {
        'level': 'WARNING',
        'file': None
    }
}


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the file does not hold a mapping
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        return cls._substitute_env_vars_recursive(config_data)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge a configuration over DEFAULT_CONFIG."""
        return _deep_merge(DEFAULT_CONFIG, config or {})

    @classmethod
    def validate(cls, config: Dict[str, Any], require_credentials: bool = False) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate
            require_credentials: Also require base URL, email and API token

        Raises:
            ValueError: If validation fails
        """
        if require_credentials:
            cls._validate_required_field(config, 'confluence.base_url')
            cls._validate_required_field(config, 'confluence.email')
            cls._validate_required_field(config, 'confluence.api_token')

        base_url = get_nested(config, 'confluence.base_url')
        if base_url:
            cls._validate_url(base_url, 'confluence.base_url')

        timeout = get_nested(config, 'confluence.timeout', 60)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("confluence.timeout must be a positive number")

        max_retries = get_nested(config, 'confluence.max_retries', 3)
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
            raise ValueError("confluence.max_retries must be a non-negative integer")

        image_folder = get_nested(config, 'conversion.image_folder', 'assets')
        if not isinstance(image_folder, str) or not image_folder.strip():
            raise ValueError("conversion.image_folder must be a non-empty string")

        output_dir = get_nested(config, 'export.output_directory')
        if output_dir and os.path.exists(output_dir) and not os.path.isdir(output_dir):
            raise ValueError(f"export.output_directory '{output_dir}' is not a directory")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        for section in ('confluence', 'conversion', 'export', 'logging'):
            if not isinstance(merged.get(section), dict):
                merged[section] = {}

        # Merge confluence settings
        if getattr(args, 'base_url', None):
            merged['confluence']['base_url'] = args.base_url

        if getattr(args, 'email', None):
            merged['confluence']['email'] = args.email

        if getattr(args, 'api_token', None):
            merged['confluence']['api_token'] = args.api_token

        # Merge conversion settings
        if getattr(args, 'image_folder', None):
            merged['conversion']['image_folder'] = args.image_folder

        if getattr(args, 'no_download_images', False):
            merged['conversion']['download_images'] = False

        if getattr(args, 'no_frontmatter', False):
            merged['conversion']['include_frontmatter'] = False

        # Merge export settings
        if getattr(args, 'output', None):
            merged['export']['output_directory'] = args.output

        if getattr(args, 'filename_template', None):
            merged['export']['filename_template'] = args.filename_template

        # Merge logging settings
        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        verbose = getattr(args, 'verbose', 0) or 0
        if verbose >= 2:
            merged['logging']['level'] = 'DEBUG'
        elif verbose == 1:
            merged['logging']['level'] = 'INFO'

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config_section: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config_section, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        # Unset variables are left as ${NAME} by substitution
        if isinstance(value, str):
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            if match:
                raise ValueError(
                    f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                    f"Please set the {match.group(1)} environment variable or provide a value in config file."
                )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise ValueError(f"Invalid URL for {field_name}: {url}. Error: {str(e)}") from e
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "confluence.base_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    value = config
    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


__all__ = ['DEFAULT_CONFIG', 'ConfigLoader', 'get_nested']
