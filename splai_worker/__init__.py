"""Worker agent that registers with a control plane, runs assigned tasks and reports results."""

__version__ = "0.1.0"