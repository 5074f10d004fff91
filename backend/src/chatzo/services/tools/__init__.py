"""Tool adapters."""
