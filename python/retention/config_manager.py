#!/usr/bin/env python3
"""
Configuration Manager for rmami

Settings are layered, later layers winning:
  1. built-in defaults
  2. the ``rmami`` section of config.yaml (path from --config or RMAMI_CONFIG_FILE)
  3. RMAMI_* environment variables
  4. explicit overrides (command line flags, or raw dicts handed to the provisioner)

AWS_REGION and AWS_DEFAULT_REGION are only consulted when no layer sets a
region. Credentials are never read from AWS_* variables here; empty keys are
left to the boto3 credential chain, which also picks up session tokens.

String settings may contain ``{{user `name`}}`` or ``{{env `NAME`}}`` templates.
All problems are collected and raised together as one ConfigurationError.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import yaml

from retention.errors import ConfigurationError
from retention.planner import MIN_KEEP
from retention.registry import DEFAULT_ROLE_TAG

SECTION = "rmami"
DEFAULT_OWNER = "self"

# keys the template engine runs over
TEMPLATED_KEYS = ("region", "access_key", "secret_key", "owner", "role")
SECRET_KEYS = ("access_key", "secret_key")

ENV_OVERRIDES = (
    ("region", ("RMAMI_REGION",)),
    ("owner", ("RMAMI_OWNER",)),
    ("role", ("RMAMI_ROLE",)),
    ("keep", ("RMAMI_KEEP",)),
    ("dry_run", ("RMAMI_DRY_RUN",)),
    ("role_tag", ("RMAMI_ROLE_TAG",)),
)

# fallbacks for an otherwise unset region
REGION_FALLBACKS = ("AWS_REGION", "AWS_DEFAULT_REGION")

_TEMPLATE_RE = re.compile(r"\{\{\s*(\w+)\s+`([^`]*)`\s*\}\}")
_TRUE = ("true", "1", "yes", "y", "on")
_FALSE = ("false", "0", "no", "n", "off", "")


def default_config() -> Dict[str, Any]:
    return {
        SECTION: {
            "region": "",
            "owner": "",
            "role": "",
            "keep": None,
            "dry_run": False,
            "access_key": "",
            "secret_key": "",
            "role_tag": DEFAULT_ROLE_TAG,
        },
        "logging": {"level": "INFO"},
    }


@dataclass(frozen=True)
class RetentionConfig:
    """Fully resolved settings for one retention run"""

    region: str
    owner: str
    role: str
    keep_count: int
    dry_run: bool = False
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    role_tag: str = DEFAULT_ROLE_TAG

    def __repr__(self) -> str:
        return (f"RetentionConfig(region={self.region!r}, owner={self.owner!r}, role={self.role!r}, "
                f"keep_count={self.keep_count!r}, dry_run={self.dry_run!r}, role_tag={self.role_tag!r})")


def interpolate(value: str, user_vars: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> str:
    """Expand ``{{user `x`}}`` and ``{{env `X`}}`` references in a string

    Raises:
        ValueError: On an unknown function, an undefined user variable or a stray ``{{``
    """
    environ = os.environ if environ is None else environ

    def _replace(match):
        func, arg = match.group(1), match.group(2)
        if func == "user":
            if arg not in user_vars:
                raise ValueError(f"user variable {arg!r} is not defined")
            return str(user_vars[arg])
        if func == "env":
            return environ.get(arg, "")
        raise ValueError(f"function {func!r} not defined")

    result = _TEMPLATE_RE.sub(_replace, value)
    if "{{" in result or "}}" in result:
        raise ValueError(f"unsupported template in {value!r}")
    return result


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE + _FALSE:
        return value.strip().lower() in _TRUE
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"dry_run must be a boolean, got: {value!r}")


class ConfigManager:
    """Collects rmami settings from file, environment and overrides"""

    def __init__(self, config_file: Optional[str] = None, user_vars: Optional[Mapping[str, str]] = None,
                 overrides: Optional[Mapping[str, Any]] = None, load_file: bool = True,
                 environ: Optional[Mapping[str, str]] = None):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to RMAMI_CONFIG_FILE or config.yaml)
            user_vars: Values for ``{{user `name`}}`` templates
            overrides: Settings that win over file and environment, None values are ignored
            load_file: If False, skip the YAML file entirely
            environ: Environment mapping, defaults to os.environ
        """
        self.environ = os.environ if environ is None else environ
        if config_file is None:
            config_file = self.environ.get("RMAMI_CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.user_vars: Dict[str, str] = dict(user_vars or {})
        self._load_errors: List[str] = []
        self.config = self._load_config() if load_file else default_config()
        self._apply_environment()
        if overrides:
            self.merge(overrides)

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        defaults = default_config()
        if not os.path.exists(self.config_file):
            logging.debug(f"Config file {self.config_file} not found, using defaults")
            return defaults
        try:
            with open(self.config_file, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            self._load_errors.append(f"could not read config file {self.config_file}: {e}")
            return defaults
        if not isinstance(user_config, dict):
            self._load_errors.append(f"config file {self.config_file} must contain a mapping")
            return defaults
        return self._merge_config(defaults, user_config)

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_environment(self) -> None:
        section = self.section
        for key, names in ENV_OVERRIDES:
            for name in names:
                value = self.environ.get(name)
                if value:
                    section[key] = value
                    break
        level = self.environ.get("RMAMI_LOG_LEVEL")
        if level:
            self.config.setdefault("logging", {})["level"] = level

    @property
    def section(self) -> Dict[str, Any]:
        section = self.config.get(SECTION)
        if not isinstance(section, dict):
            if section is not None:
                self._load_errors.append(f"'{SECTION}' section must be a mapping")
            section = default_config()[SECTION]
            self.config[SECTION] = section
        return section

    def merge(self, values: Mapping[str, Any]) -> None:
        """Apply explicit settings on top of everything loaded so far.

        ``packer_user_variables`` supplies template variables; other ``packer_*``
        keys are accepted and ignored.
        """
        section = self.section
        for key, value in values.items():
            if key == "packer_user_variables":
                self.user_vars.update(value or {})
            elif key.startswith("packer_") or value is None:
                continue
            else:
                section[key] = value

    def get_log_level(self) -> str:
        return str(self.config.get("logging", {}).get("level", "INFO"))

    def resolve(self) -> RetentionConfig:
        """Validate everything and return the resolved configuration

        Raises:
            ConfigurationError: With every problem found, not just the first
        """
        errors = list(self._load_errors)
        section = dict(self.section)
        known = list(default_config()[SECTION])

        for key in sorted(set(section) - set(known)):
            errors.append(f"unknown configuration key: {key}")

        values: Dict[str, Any] = {}
        for key in known:
            value = section.get(key)
            if key in TEMPLATED_KEYS and isinstance(value, str):
                try:
                    value = interpolate(value, self.user_vars, self.environ)
                except ValueError as e:
                    errors.append(f"error processing {key}: {e}")
            values[key] = value

        region = values.get("region")
        if region is None or (isinstance(region, str) and not region.strip()):
            values["region"] = next((self.environ[n] for n in REGION_FALLBACKS if self.environ.get(n)), "")

        for key in ("role", "region"):
            value = values.get(key)
            if not isinstance(value, str) or not value.strip():
                errors.append(f"missing rmami parameter {key}")

        keep = values.get("keep")
        keep_count = None
        if keep is None or keep == "":
            errors.append(f"missing rmami parameter keep (must be at least {MIN_KEEP})")
        else:
            try:
                if isinstance(keep, bool):
                    raise ValueError
                keep_count = int(keep)
                if isinstance(keep, float) and keep != keep_count:
                    raise ValueError
            except (TypeError, ValueError):
                errors.append(f"rmami parameter keep must be an integer, got: {keep!r}")
            else:
                if keep_count < MIN_KEEP:
                    errors.append(f"rmami parameter keep must be at least {MIN_KEEP}, got: {keep_count}")

        dry_run = False
        try:
            dry_run = _coerce_bool(values.get("dry_run", False))
        except ValueError as e:
            errors.append(str(e))

        role_tag = values.get("role_tag") or DEFAULT_ROLE_TAG
        if not isinstance(role_tag, str):
            errors.append(f"role_tag must be a string, got: {role_tag!r}")

        access_key = values.get("access_key") or None
        secret_key = values.get("secret_key") or None
        if bool(access_key) != bool(secret_key):
            errors.append("access_key and secret_key must be set together")

        if errors:
            raise ConfigurationError(errors)

        owner = values.get("owner")
        return RetentionConfig(
            region=values["region"].strip(),
            owner=owner.strip() if isinstance(owner, str) and owner.strip() else DEFAULT_OWNER,
            role=values["role"].strip(),
            keep_count=keep_count,
            dry_run=dry_run,
            access_key=access_key,
            secret_key=secret_key,
            role_tag=role_tag,
        )

    def describe(self) -> Dict[str, Any]:
        """Current settings with secrets masked"""
        described = {}
        for key, value in sorted(self.section.items()):
            if key in SECRET_KEYS and value:
                value = "*" * 8
            described[key] = value
        described["config_file"] = self.config_file
        described["log_level"] = self.get_log_level()
        return described

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        for key, value in self.describe().items():
            print(f"  {key}: {value if value not in (None, '') else 'Not set'}")
