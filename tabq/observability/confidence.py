"""
Confidence thresholds for the classification pipeline.

Values are loaded from config/tabq_policy.yaml; the constants below fall back
to hard-coded defaults when the file is missing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from tabq.observability.logging import get_logger

logger = get_logger(__name__)


def _load_policy_config() -> dict[str, Any]:
    """
    Load configuration from tabq_policy.yaml.

    Side Effects:
        - Reads config/tabq_policy.yaml from the filesystem
    """
    possible_paths = [
        Path(__file__).parent.parent.parent / "config" / "tabq_policy.yaml",
        Path("config/tabq_policy.yaml"),
    ]

    for config_path in possible_paths:
        if config_path.exists():
            with open(config_path) as f:
                config = yaml.safe_load(f) or {}
                logger.debug("Loaded policy config from %s", config_path)
                return config

    logger.warning("tabq_policy.yaml not found, using hardcoded defaults")
    return {}


_POLICY_CONFIG = _load_policy_config()
_CLASSIFICATION_CONFIG = _POLICY_CONFIG.get("classification", {})
_HEURISTICS_CONFIG = _POLICY_CONFIG.get("heuristics", {})

# Learned-model verdicts below this posterior fall through to the remote stage
LEARNED_MIN_CONFIDENCE = _CLASSIFICATION_CONFIG.get("learned_min_confidence", 0.3)

# Learned-model verdicts at or above this are counted as high confidence
LEARNED_HIGH_CONFIDENCE = _CLASSIFICATION_CONFIG.get("learned_high_confidence", 0.8)

RULE_CONFIDENCE = _CLASSIFICATION_CONFIG.get("rule_confidence", 1.0)
REMOTE_CONFIDENCE = _CLASSIFICATION_CONFIG.get("remote_confidence", 0.85)
HEURISTIC_CONFIDENCE = _CLASSIFICATION_CONFIG.get("heuristic_confidence", 0.5)
USER_CORRECTION_CONFIDENCE = _CLASSIFICATION_CONFIG.get("user_correction_confidence", 1.0)

# Sites whose bare pages are usually safe to close
FREQUENT_DOMAINS: list[str] = _HEURISTICS_CONFIG.get(
    "frequent_domains",
    [
        "mail.google.com",
        "gmail.com",
        "x.com",
        "twitter.com",
        "youtube.com",
        "google.com",
        "facebook.com",
        "instagram.com",
        "linkedin.com",
        "reddit.com",
        "github.com",
    ],
)


def get_all_thresholds() -> dict[str, Any]:
    """Get all thresholds as a dictionary (for API exposure)"""
    return {
        "learned": {"min": LEARNED_MIN_CONFIDENCE, "high": LEARNED_HIGH_CONFIDENCE},
        "rule": RULE_CONFIDENCE,
        "remote": REMOTE_CONFIDENCE,
        "heuristic": HEURISTIC_CONFIDENCE,
        "user_correction": USER_CORRECTION_CONFIDENCE,
    }


def validate_thresholds() -> bool:
    """
    Validate that all thresholds are within [0, 1] and ordered.

    Raises:
        ValueError: If thresholds are inconsistent
    """
    errors = []
    for name, val in [
        ("learned_min", LEARNED_MIN_CONFIDENCE),
        ("learned_high", LEARNED_HIGH_CONFIDENCE),
        ("rule", RULE_CONFIDENCE),
        ("remote", REMOTE_CONFIDENCE),
        ("heuristic", HEURISTIC_CONFIDENCE),
        ("user_correction", USER_CORRECTION_CONFIDENCE),
    ]:
        if not (0.0 <= val <= 1.0):
            errors.append(f"Threshold {name}={val} is outside valid range [0.0, 1.0]")

    if LEARNED_MIN_CONFIDENCE >= LEARNED_HIGH_CONFIDENCE:
        errors.append(
            f"LEARNED_MIN_CONFIDENCE ({LEARNED_MIN_CONFIDENCE}) "
            f"must be < LEARNED_HIGH_CONFIDENCE ({LEARNED_HIGH_CONFIDENCE})"
        )

    if errors:
        raise ValueError("Threshold validation failed:\n" + "\n".join(errors))

    return True


try:
    validate_thresholds()
except ValueError as e:
    logger.warning("Confidence threshold validation warning: %s", e)
