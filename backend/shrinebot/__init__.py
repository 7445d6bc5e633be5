"""Discord bot that reconciles shrine event participation into role grants."""

__version__ = "1.0.0"
