"""Thread-to-session mapping, pause state and held messages."""
