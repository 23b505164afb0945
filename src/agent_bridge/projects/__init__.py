"""Named projects and per-channel working directories."""
