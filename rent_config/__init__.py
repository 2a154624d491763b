"""
rent_config -- single public entrypoint for allocation policy.

Responsibility:
    ``get_active_policy()`` is the only way runtime code obtains the
    policy constants (tolerance band, duplicate window, recency cap, due
    day, sentinel).  The kernel MUST NEVER import from ``rent_config``;
    callers pass the returned ``AllocationPolicy`` into kernel services.

Failure modes:
    - ``FileNotFoundError`` if the policy file does not exist.
    - ``ValueError`` on unknown keys or values the policy rejects.

Audit relevance:
    Every call emits a ``RENT_POLICY_TRACE`` log entry carrying the
    config id, version and SHA-256 checksum of the loaded file.
"""

from __future__ import annotations

from pathlib import Path

from rent_config.loader import load_policy_set
from rent_config.schema import AllocationPolicyDef, PolicySet
from rent_kernel.domain.policy import AllocationPolicy
from rent_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_POLICY_FILE = _DEFAULT_CONFIG_DIR / "default.yaml"


def get_active_policy(path: Path | str | None = None) -> AllocationPolicy:
    """Load, validate and return the allocation policy."""
    policy_set = load_policy_set(Path(path) if path else DEFAULT_POLICY_FILE)
    policy = policy_set.allocation.to_policy()

    _logger.info(
        "RENT_POLICY_TRACE",
        extra={
            "trace_type": "RENT_POLICY_TRACE",
            "config_id": policy_set.config_id,
            "version": policy_set.version,
            "checksum": policy_set.checksum,
            "amount_tolerance": str(policy.amount_tolerance),
            "duplicate_window_hours": policy.duplicate_window_hours,
            "max_payment_age_days": policy.max_payment_age_days,
        },
    )
    return policy


__all__ = [
    "get_active_policy",
    "AllocationPolicyDef",
    "PolicySet",
    "DEFAULT_POLICY_FILE",
]
