"""
Configuration Management System for publication tables

This module provides centralized configuration management for the table
builders, including regression-table options, number and interval formatting,
univariate-table defaults, and logging configuration.

Usage:
    from config import CONFIG

    # Access config
    print(CONFIG.get('regression.confint_method'))

    # Update config (runtime)
    CONFIG.update('format.pvalue_stars', True)

    # Get with default
    value = CONFIG.get('some.nested.key', default='default_value')
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional
import warnings

CONFINT_METHODS = ["default", "profile", "robust", "simultaneous"]
PVALUE_METHODS = ["default", "robust", "simultaneous"]
FACTOR_REFERENCES = ["extraline", "inline"]
SHOW_MISSING = ["ifany", "always", "never"]
COMPARE_GROUPS = [False, True, "logistic", "cox"]
CI_HANDLERS = ["sprintf", "format", "prettyNum"]


class ConfigManager:
    """
    Centralized configuration management with hierarchical key access.

    Supports:
    - Nested dictionary access with dot notation
    - Default values and fallbacks
    - Environment variable overrides
    - Config validation
    - Runtime updates
    """

    def __init__(self, config_dict: Optional[Dict] = None):
        """
        Create a ConfigManager populated with the given configuration or the module defaults and apply environment variable overrides.

        Parameters:
            config_dict (dict | None): Optional initial configuration dictionary to use instead of the built-in defaults.
        """
        self._config = config_dict or self._get_default_config()
        self._env_prefix = "PUBTABLE_"
        self._load_env_overrides()

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """
        Provide the default nested configuration.

        Returns:
            Dict[str, Any]: sections 'regression', 'format', 'univariate'
            and 'logging' with their default settings.
        """
        return {

            # ========== REGRESSION TABLES ==========
            "regression": {
                "confint_method": "default",  # 'default', 'profile', 'robust', 'simultaneous'
                "pvalue_method": None,  # None follows confint_method
                "factor_reference": "extraline",  # 'extraline', 'inline'
                "probindex": False,
                "alpha": 0.05,
                "profile_max_expand": 12,  # bracket doublings before giving up on a profile bound
                "simultaneous_seed": 20240229,  # fixed seed for the multivariate normal integration
            },

            # ========== NUMBER & INTERVAL FORMATTING ==========
            "format": {
                "digits": 2,
                "pvalue_digits": 4,
                "pvalue_eps": 0.0001,
                "pvalue_stars": False,
                "ci_format": "[l;u]",
                "ci_handler": "sprintf",
                "ci_degenerated": "asis",
                "ci_sep": " ",
                "reference_label": "Ref",
                "show_missing": "ifany",  # 'ifany', 'always', 'never'
                "na_string": "NA",
            },

            # ========== UNIVARIATE TABLES ==========
            "univariate": {
                "summary_format": "mean(x) (sd(x))",
                "q_format": "median(x) [iqr(x)]",
                "freq_format": "count(x) (percent(x))",
                "column_percent": True,
                "digits_summary": 1,
                "digits_freq": 1,
                "digits_pvalue": 3,
                "compare_groups": True,  # False, True, 'logistic', 'cox'
                "show_totals": True,
                "n": "inNames",  # 'inNames', True, False
                "missing_group_label": "Missing",
                "category_threshold": 3,  # numeric with fewer distinct values is categorical
                "fisher_expected_min": 5,
            },

            # ========== LOGGING SETTINGS ==========
            "logging": {
                "enabled": True,
                "level": "INFO",  # DEBUG, INFO, WARNING, ERROR, CRITICAL
                "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
                "date_format": "%Y-%m-%d %H:%M:%S",

                # File Logging
                "file_enabled": False,
                "log_dir": "logs",
                "log_file": "pubtable.log",
                "max_log_size": 10485760,  # 10MB in bytes
                "backup_count": 5,

                # Console Logging
                "console_enabled": True,
                "console_level": "WARNING",

                # What to Log
                "log_table_operations": True,
                "log_performance": True,
            },
        }

    def _load_env_overrides(self) -> None:
        """
        Apply configuration overrides from environment variables that start with the PUBTABLE_ prefix.

        Variables follow the form PUBTABLE_<SECTION>_<KEY>=value (e.g.
        PUBTABLE_FORMAT_PVALUE_DIGITS=3 -> format.pvalue_digits). Values are
        decoded as JSON when possible so numbers and booleans keep their type;
        otherwise the raw string is used. Failed overrides are warned about and skipped.
        """
        for key, value in os.environ.items():
            if key.startswith(self._env_prefix):
                # PUBTABLE_LOGGING_LEVEL -> ['logging', 'level']
                parts = key[len(self._env_prefix):].lower().split('_')

                if len(parts) < 2:
                    continue

                section = parts[0]
                key_name = '_'.join(parts[1:])

                try:
                    parsed = json.loads(value)
                except json.JSONDecodeError:
                    parsed = value

                try:
                    self.update(f"{section}.{key_name}", parsed)
                except (KeyError, ValueError, TypeError) as e:
                    warnings.warn(f"Failed to set env override {key}={value}: {e}", stacklevel=2)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value using a dot-separated key path.

        Returns the value at the path, or `default` if the path is not found.
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def update(self, key: str, value: Any) -> None:
        """
        Set an existing configuration value identified by a dot-separated path.

        Raises:
            KeyError: If any intermediate path segment or the final key does not exist.
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                raise KeyError(f"Config path '{'.'.join(keys[:-1])}' does not exist")
            config = config[k]

        final_key = keys[-1]
        if final_key not in config:
            raise KeyError(f"Config key '{key}' does not exist")

        config[final_key] = value

    def set_nested(self, key: str, value: Any, create: bool = False) -> None:
        """
        Set a value using a dot-separated path, optionally creating missing intermediate dictionaries.
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                if create:
                    config[k] = {}
                else:
                    raise KeyError(f"Config path '{k}' does not exist")
            config = config[k]

        config[keys[-1]] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Return a deep copy of a top-level configuration section."""
        result = self.get(section, {})
        return copy.deepcopy(result) if isinstance(result, dict) else result

    def to_dict(self) -> Dict[str, Any]:
        """Get a deep copy of the entire configuration dictionary."""
        return copy.deepcopy(self._config)

    def to_json(self, filepath: Optional[str] = None, pretty: bool = True) -> str:
        """
        Serialize the current configuration to a JSON string.

        Parameters:
            filepath (str | None): Optional path to write the JSON output; the file is overwritten.
            pretty (bool): Indent the JSON when True.
        """
        json_str = json.dumps(self._config, indent=2 if pretty else None)

        if filepath:
            Path(filepath).write_text(json_str)

        return json_str

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate key configuration constraints and collect any violations.

        Checks the interval and p-value method names, the categorical display
        style, the missing-column policy, the group comparison method, the
        interval handler, alpha, the p-value epsilon, and the logging level.

        Returns:
            tuple: (is_valid, errors) where `errors` lists human-readable messages.
        """
        errors = []

        if self.get('regression.confint_method') not in CONFINT_METHODS:
            errors.append(f"regression.confint_method must be one of {CONFINT_METHODS}")

        pvalue_method = self.get('regression.pvalue_method')
        if pvalue_method is not None and pvalue_method not in PVALUE_METHODS:
            errors.append(f"regression.pvalue_method must be None or one of {PVALUE_METHODS}")

        if self.get('regression.factor_reference') not in FACTOR_REFERENCES:
            errors.append(f"regression.factor_reference must be one of {FACTOR_REFERENCES}")

        alpha = self.get('regression.alpha')
        if alpha is None or not (0 < alpha < 1):
            errors.append("regression.alpha must be between 0 and 1")

        eps = self.get('format.pvalue_eps')
        if eps is None or not (0 < eps < 1):
            errors.append("format.pvalue_eps must be between 0 and 1")

        if self.get('format.show_missing') not in SHOW_MISSING:
            errors.append(f"format.show_missing must be one of {SHOW_MISSING}")

        if self.get('format.ci_handler') not in CI_HANDLERS:
            errors.append(f"format.ci_handler must be one of {CI_HANDLERS}")

        compare = self.get('univariate.compare_groups')
        if not (isinstance(compare, bool) or compare in ("logistic", "cox")):
            errors.append(f"univariate.compare_groups must be one of {COMPARE_GROUPS}")

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.get('logging.level') not in valid_levels:
            errors.append(f"logging.level must be one of {valid_levels}")

        return len(errors) == 0, errors

    def __repr__(self) -> str:
        return f"ConfigManager({len(self._config)} sections)"


# Global config instance
CONFIG = ConfigManager()
