"""FlowMind model provider management backend."""
