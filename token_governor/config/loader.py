"""
Configuration management and loading.

Reads rate limits, backoff and budget settings from YAML.
"""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Type

import yaml

from token_governor.core.backoff import BackoffConfig
from token_governor.core.governor import RequestGovernor
from token_governor.core.ledger import BudgetConfig, UsageLedger
from token_governor.core.rate_limits import RateLimitConfig


@dataclass(frozen=True)
class GovernorSettings:
    """Complete governor configuration."""
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)

    def build_governor(self, **kwargs: Any) -> RequestGovernor:
        """Create a governor from these settings; kwargs go to the constructor."""
        return RequestGovernor(self.rate_limits, self.backoff, **kwargs)

    def build_ledger(self, **kwargs: Any) -> UsageLedger:
        return UsageLedger(self.budget, **kwargs)


_SECTIONS: Dict[str, Type] = {
    "rate_limits": RateLimitConfig,
    "backoff": BackoffConfig,
    "budget": BudgetConfig,
}


def load_governor_config(path: str) -> GovernorSettings:
    """Load and validate governor configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could
    lead to unexpected throttling or overspending. Every section and every
    key inside a section is optional; missing values use the defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GovernorSettings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Governor config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(raw_config.get(name), cls, name)
        for name, cls in _SECTIONS.items()
    }
    return GovernorSettings(**sections)


def _parse_section(data: Optional[Dict], cls: Type, path: str) -> Any:
    """Parse and validate one configuration section.

    Args:
        data: Section data (None uses defaults)
        cls: Dataclass the section maps onto
        path: Path for error messages

    Returns:
        Instance of ``cls``

    Raises:
        ValueError: If the section is invalid
    """
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    defaults = cls()
    allowed_keys = {f.name for f in dataclasses.fields(cls)}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        expected = type(getattr(defaults, key))
        # bool is an int subclass and never a valid limit
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in {path} must be a number")
        if expected is int and not float(value).is_integer():
            raise ValueError(f"'{key}' in {path} must be a whole number")
        values[key] = expected(value)

    try:
        return cls(**values)
    except ValueError as e:
        raise ValueError(f"Invalid {path}: {e}")
