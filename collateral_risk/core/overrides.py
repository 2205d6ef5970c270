"""
Asset and Pool Overrides.

Two static tables, loaded once per scoring run:

- Asset overrides (address-keyed): an optional "underlying" address to score
  in place of the listed token, and optional per-category test overrides.
- Pool overrides (pool-keyed): multisig flags.

Test overrides have two modes, chosen per deployment:

- BOOLEAN: each sub-test has a gate, true applies the heuristic, false forces
  that sub-test's contribution to 0. Missing gates default to true.
    {"test": "crash", "section": "twitter", "value": false}
    {"test": "historical", "value": false}          # every section of the category
- NUMERIC: each category has a value or is unset. A value replaces the
  computed sub-score verbatim.
    {"test": "liquidity", "value": 0}
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class Category(Enum):
    CRASH = "crash"
    LIQUIDITY = "liquidity"
    VOLATILITY = "volatility"
    HISTORICAL = "historical"


class OverrideMode(Enum):
    BOOLEAN = "boolean"
    NUMERIC = "numeric"

    @classmethod
    def parse(cls, value: Union[str, "OverrideMode"]) -> "OverrideMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown override mode '{value}'", context={"valid": [m.value for m in cls]}
            ) from None


# Sub-tests per category, in scoring order
SECTIONS = {
    Category.CRASH: ("twitter", "audit", "market_cap"),
    Category.LIQUIDITY: ("total_liquidity", "lp_addresses"),
    Category.VOLATILITY: ("market_cap", "volatility"),
    Category.HISTORICAL: ("backtest",),
}

# camelCase names used by older override files
_SECTION_ALIASES = {
    "marketCap": "market_cap",
    "totalLiquidity": "total_liquidity",
    "lpAddresses": "lp_addresses",
}


@dataclass(frozen=True)
class CategoryOverride:
    """Override state for one category."""
    gates: Mapping[str, bool] = field(default_factory=dict)
    value: Optional[int] = None

    def enabled(self, section: str) -> bool:
        return self.gates.get(section, True)


@dataclass(frozen=True)
class OverrideConfig:
    """Resolved test overrides for one asset."""
    mode: OverrideMode
    categories: Mapping[Category, CategoryOverride] = field(default_factory=dict)

    def category(self, category: Category) -> CategoryOverride:
        return self.categories.get(category, CategoryOverride())

    def gate(self, category: Category, section: str) -> bool:
        """Whether a sub-test applies. Always true outside BOOLEAN mode."""
        if self.mode is not OverrideMode.BOOLEAN:
            return True
        return self.category(category).enabled(section)

    def value(self, category: Category) -> Optional[int]:
        """Replacement sub-score. Always unset outside NUMERIC mode."""
        if self.mode is not OverrideMode.NUMERIC:
            return None
        return self.category(category).value

    @classmethod
    def default(cls, mode: Union[str, OverrideMode] = OverrideMode.NUMERIC) -> "OverrideConfig":
        return cls(mode=OverrideMode.parse(mode))

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[Mapping[str, Any]],
        mode: Union[str, OverrideMode] = OverrideMode.NUMERIC,
    ) -> "OverrideConfig":
        """
        Build from a list of {"test", "section"?, "value"} entries.

        Raises:
            ConfigurationError: Unknown category/section or wrong value type for the mode
        """
        mode = OverrideMode.parse(mode)
        gates: Dict[Category, Dict[str, bool]] = {}
        values: Dict[Category, Optional[int]] = {}

        for entry in entries or []:
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"Override entry must be an object, got {entry!r}")
            category = _parse_category(entry.get("test"))
            section = entry.get("section")
            value = entry.get("value")

            if mode is OverrideMode.BOOLEAN:
                if not isinstance(value, bool):
                    raise ConfigurationError(
                        f"Boolean override for '{category.value}' needs a true/false value, got {value!r}",
                        context={"entry": dict(entry)},
                    )
                sections = [_parse_section(category, section)] if section else list(SECTIONS[category])
                for name in sections:
                    gates.setdefault(category, {})[name] = value
            else:
                if section:
                    raise ConfigurationError(
                        f"Numeric override for '{category.value}' applies to the whole category, "
                        f"section '{section}' not allowed",
                        context={"entry": dict(entry)},
                    )
                if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                    raise ConfigurationError(
                        f"Numeric override for '{category.value}' needs a non-negative integer or null, got {value!r}",
                        context={"entry": dict(entry)},
                    )
                values[category] = value

        categories = {
            category: CategoryOverride(gates=gates.get(category, {}), value=values.get(category))
            for category in Category
            if category in gates or category in values
        }
        return cls(mode=mode, categories=categories)


def _parse_category(name: Any) -> Category:
    try:
        return Category(name)
    except ValueError:
        raise ConfigurationError(
            f"Unknown override test '{name}'", context={"valid": [c.value for c in Category]}
        ) from None


def _parse_section(category: Category, name: str) -> str:
    section = _SECTION_ALIASES.get(name, name)
    if section not in SECTIONS[category]:
        raise ConfigurationError(
            f"Unknown section '{name}' for test '{category.value}'",
            context={"valid": list(SECTIONS[category])},
        )
    return section


# =============================================================================
# OVERRIDE TABLES
# =============================================================================

class OverrideTables:
    """
    Address- and pool-keyed override tables.

    Every entry is validated at construction, so a malformed table fails
    before any asset is scored.
    """

    def __init__(
        self,
        asset_overrides: Optional[List[Mapping[str, Any]]] = None,
        pool_overrides: Optional[List[Mapping[str, Any]]] = None,
        mode: Union[str, OverrideMode] = OverrideMode.NUMERIC,
    ):
        self.mode = OverrideMode.parse(mode)
        self._underlying: Dict[str, str] = {}
        self._tests: Dict[str, OverrideConfig] = {}
        self._pools: Dict[str, Dict[str, Any]] = {}

        for entry in asset_overrides or []:
            address = entry.get("address") if isinstance(entry, Mapping) else None
            if not address or not isinstance(address, str):
                raise ConfigurationError(f"Asset override without address: {entry!r}")
            key = address.lower()
            underlying = entry.get("underlying")
            if underlying is not None and not isinstance(underlying, str):
                raise ConfigurationError(
                    f"Underlying for {address} must be an address string", context={"underlying": underlying}
                )
            if underlying:
                self._underlying[key] = underlying
            if entry.get("tests") is not None:
                self._tests[key] = OverrideConfig.from_entries(entry["tests"], self.mode)

        for entry in pool_overrides or []:
            pool_id = None
            if isinstance(entry, Mapping):
                pool_id = entry.get("poolID", entry.get("pool_id"))
            if pool_id is None:
                raise ConfigurationError(f"Pool override without poolID: {entry!r}")
            self._pools[str(pool_id)] = dict(entry)

    @classmethod
    def load(
        cls,
        asset_path: Optional[str] = None,
        pool_path: Optional[str] = None,
        mode: Optional[Union[str, OverrideMode]] = None,
    ) -> "OverrideTables":
        """Load both tables from JSON files shaped {"overrides": [...]} (defaults to settings)."""
        from ..config.settings import ASSET_OVERRIDES_PATH, POOL_OVERRIDES_PATH, OVERRIDE_MODE

        asset_path = asset_path or ASSET_OVERRIDES_PATH
        pool_path = pool_path or POOL_OVERRIDES_PATH
        tables = cls(
            asset_overrides=_read_table(asset_path),
            pool_overrides=_read_table(pool_path),
            mode=mode or OVERRIDE_MODE,
        )
        logger.info(
            "loaded overrides (%s mode): %d underlying, %d test, %d pool",
            tables.mode.value, len(tables._underlying), len(tables._tests), len(tables._pools),
        )
        return tables

    def resolve_address(self, address: str) -> str:
        """Underlying address to score in place of address, or address itself."""
        return self._underlying.get(address.lower(), address)

    def test_overrides(self, address: str) -> OverrideConfig:
        return self._tests.get(address.lower()) or OverrideConfig.default(self.mode)

    def pool_override(self, pool_id: str) -> Optional[Dict[str, Any]]:
        return self._pools.get(str(pool_id))

    def multisig(self, pool_id: str) -> bool:
        override = self.pool_override(pool_id)
        if override is None:
            return False
        return bool(override.get("multisig", True))


def _read_table(path: str) -> List[Mapping[str, Any]]:
    file_path = Path(path)
    if not file_path.exists():
        logger.warning("override table %s not found, using empty table", path)
        return []
    try:
        with open(file_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Override table {path} is not valid JSON: {e}") from e

    overrides = data.get("overrides") if isinstance(data, dict) else None
    if not isinstance(overrides, list):
        raise ConfigurationError(f"Override table {path} must be an object with an 'overrides' list")
    return overrides
