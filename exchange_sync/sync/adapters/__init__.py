"""Remote system adapters."""
