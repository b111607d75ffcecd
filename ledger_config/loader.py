"""
Settings loader (``ledger_config.loader``).

Responsibility
--------------
Reads the packaged ``defaults.yaml``, overlays an optional user YAML file
and then ``LEDGER_*`` environment variables, and builds a validated
``LedgerSettings``.  Runtime callers go through
``ledger_config.get_active_settings()``, not this module.

Invariants enforced
-------------------
* Unknown sections or keys in a YAML file raise ``ValueError``; typos never
  fall back silently to a default.
* Environment overrides are parsed with ``yaml.safe_load`` so ``"5000"``
  becomes an int and ``"READ COMMITTED"`` stays a string.
* ``compute_checksum`` is deterministic for identical effective values.

Failure modes
-------------
* Missing user file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema ``__post_init__``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    FanoutSettings,
    IdempotencySettings,
    LedgerSettings,
    LoggingSettings,
    StatusSettings,
    TransactionSettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
ENV_PREFIX = "LEDGER_"

_SECTIONS: dict[str, type] = {
    "transaction": TransactionSettings,
    "idempotency": IdempotencySettings,
    "status": StatusSettings,
    "fanout": FanoutSettings,
    "logging": LoggingSettings,
}
_SCALARS = ("database_url",)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def _check_keys(data: Mapping[str, Any], source: str) -> None:
    for key, value in data.items():
        if key in _SCALARS:
            continue
        section = _SECTIONS.get(key)
        if section is None:
            raise ValueError(f"{source}: unknown setting {key!r}")
        if not isinstance(value, Mapping):
            raise ValueError(f"{source}: section {key!r} must be a mapping")
        known = section.__dataclass_fields__
        for sub_key in value:
            if sub_key not in known:
                raise ValueError(f"{source}: unknown setting {key}.{sub_key}")


def merge_settings(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``overlay`` applied one section deep."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """
    Collect overrides from ``LEDGER_*`` variables.

    ``LEDGER_DATABASE_URL`` sets ``database_url``; section keys use
    ``LEDGER_<SECTION>_<KEY>``, e.g. ``LEDGER_TRANSACTION_TIMEOUT_MS``.
    """
    overrides: dict[str, Any] = {}
    for scalar in _SCALARS:
        name = f"{ENV_PREFIX}{scalar.upper()}"
        if name in environ:
            overrides[scalar] = environ[name]
    for section, cls in _SECTIONS.items():
        for key in cls.__dataclass_fields__:
            name = f"{ENV_PREFIX}{section.upper()}_{key.upper()}"
            if name in environ:
                overrides.setdefault(section, {})[key] = yaml.safe_load(environ[name])
    return overrides


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def build_settings(data: Mapping[str, Any]) -> LedgerSettings:
    """Turn a merged settings mapping into a validated LedgerSettings."""
    _check_keys(data, "settings")
    sections = {
        name: cls(**dict(data.get(name) or {})) for name, cls in _SECTIONS.items()
    }
    checksum_source: dict[str, Any] = {"database_url": data.get("database_url")}
    for name, section in sections.items():
        checksum_source[name] = {
            key: getattr(section, key) for key in section.__dataclass_fields__
        }
    return LedgerSettings(
        database_url=data.get("database_url") or "",
        checksum=compute_checksum(checksum_source),
        **sections,
    )


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerSettings:
    data = load_yaml_file(DEFAULTS_PATH)
    _check_keys(data, str(DEFAULTS_PATH))
    if config_path is not None:
        user = load_yaml_file(Path(config_path))
        _check_keys(user, str(config_path))
        data = merge_settings(data, user)
    if environ is not None:
        data = merge_settings(data, env_overrides(environ))
    return build_settings(data)
