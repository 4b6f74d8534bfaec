"""Order payments against an external gateway."""
