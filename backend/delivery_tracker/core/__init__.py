"""Core configuration, logging, errors, security and geo utilities."""
