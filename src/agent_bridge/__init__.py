"""Bridge chat threads to long-running command-line AI agent sessions."""

__version__ = "0.1.0"
