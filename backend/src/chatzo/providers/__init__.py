"""Model provider bindings."""
