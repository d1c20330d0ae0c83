"""
Config: Runtime limits for the gate engine, loaded from policies/gate_engine.yaml.
"""

from typing import Optional

from pydantic import BaseModel, Field

from validator.loader import load_policy


class GateEngineConfig(BaseModel):
    """Engine-wide limits. Unset values mean "no limit"."""

    dispatch_timeout_seconds: Optional[float] = Field(None, gt=0)
    session_ttl_seconds: Optional[float] = Field(None, gt=0)

    @classmethod
    def from_policy(cls, policy_id: str = "gate_engine") -> "GateEngineConfig":
        """Build the config from a policy file; a missing policy yields defaults."""
        policy = load_policy(policy_id) or {}
        return cls(
            dispatch_timeout_seconds=policy.get("dispatch_timeout_seconds"),
            session_ttl_seconds=policy.get("session_ttl_seconds"),
        )
