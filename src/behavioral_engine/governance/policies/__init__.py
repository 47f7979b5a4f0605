"""Policy resolution."""

from behavioral_engine.governance.policies.engine import PolicyResolver, load_pipeline_defaults

__all__ = ["PolicyResolver", "load_pipeline_defaults"]
