"""Partner registry and user storage."""
