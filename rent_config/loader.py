"""
Configuration loader (``rent_config.loader``).

Responsibility
--------------
Reads a YAML policy set and parses it into the frozen dataclasses of
``rent_config.schema``.  Runtime callers use ``rent_config.get_active_policy``
instead of calling this module directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id``  -> ``KeyError`` propagates.
* Unknown keys or bad values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from rent_config.schema import AllocationPolicyDef, PolicySet

_ALLOCATION_KEYS = {f.name for f in fields(AllocationPolicyDef)}


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, float):
        # YAML floats go through str so 0.05 stays exactly 0.05
        value = str(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"allocation.{key}: not a decimal: {value!r}") from exc


def parse_allocation(data: dict[str, Any] | None) -> AllocationPolicyDef:
    data = data or {}
    unknown = set(data) - _ALLOCATION_KEYS
    if unknown:
        raise ValueError(f"Unknown allocation keys: {sorted(unknown)}")

    kwargs: dict[str, Any] = dict(data)
    if "amount_tolerance" in kwargs:
        kwargs["amount_tolerance"] = _parse_decimal(
            kwargs["amount_tolerance"], "amount_tolerance"
        )
    for key in (
        "duplicate_window_hours",
        "max_payment_age_days",
        "rent_due_day",
        "large_prepayment_months",
        "very_large_prepayment_months",
    ):
        if key in kwargs:
            kwargs[key] = int(kwargs[key])
    if "enforce_checks_on_single_month" in kwargs:
        kwargs["enforce_checks_on_single_month"] = bool(
            kwargs["enforce_checks_on_single_month"]
        )
    return AllocationPolicyDef(**kwargs)


def parse_policy_set(data: dict[str, Any]) -> PolicySet:
    return PolicySet(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        allocation=parse_allocation(data.get("allocation")),
        description=data.get("description", ""),
        checksum=compute_checksum(data),
    )


def load_policy_set(path: Path) -> PolicySet:
    return parse_policy_set(load_yaml_file(path))
