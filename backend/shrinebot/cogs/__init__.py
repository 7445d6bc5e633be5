"""Discord cogs for the shrine bot."""
