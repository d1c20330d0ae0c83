"""
Loader: Load the profile registry and policies from disk.
"""

import os
from pathlib import Path
from typing import Optional, Union

import yaml

from models.errors import ProfileConfigurationError

# Base paths (relative to project root)
PROJECT_ROOT = Path(__file__).parent.parent
REGISTRY_DIR = PROJECT_ROOT / "registry"
POLICIES_DIR = PROJECT_ROOT / "policies"

PROFILES_PATH_ENV = "GATE_PROFILES_PATH"
DEFAULT_PROFILES_PATH = REGISTRY_DIR / "profiles.yaml"


def profiles_path() -> Path:
    """Path of the profile registry, honouring GATE_PROFILES_PATH."""
    override = os.getenv(PROFILES_PATH_ENV)
    return Path(override) if override else DEFAULT_PROFILES_PATH


def load_profiles_document(path: Optional[Union[str, Path]] = None) -> dict:
    """
    Load the raw profile registry document.

    A missing or unparsable registry is a configuration error: no gate run can
    be resolved without it.
    """
    registry_path = Path(path) if path else profiles_path()
    if not registry_path.exists():
        raise ProfileConfigurationError(f"Profile registry not found: {registry_path}")

    with open(registry_path) as f:
        try:
            document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ProfileConfigurationError(f"Profile registry {registry_path} is not valid YAML: {e}") from e

    if not isinstance(document, dict):
        raise ProfileConfigurationError(f"Profile registry {registry_path} must be a mapping")
    return document


def load_policy(policy_id: str) -> Optional[dict]:
    """
    Load a policy by ID.

    policy_id can be:
    - Full filename: "gate_engine.yaml"
    - Basename: "gate_engine"
    """
    if not policy_id.endswith(".yaml"):
        policy_id = f"{policy_id}.yaml"

    policy_path = POLICIES_DIR / policy_id
    if policy_path.exists():
        with open(policy_path) as f:
            return yaml.safe_load(f)
    return None

