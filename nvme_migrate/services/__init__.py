"""Migration pipeline stages."""
