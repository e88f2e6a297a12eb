"""ctxcomposer - budgeted, lane-prioritized context composition."""

__version__ = "0.1.0"
