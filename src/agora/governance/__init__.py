"""Assembly configuration, resolution store, and the lifecycle gate."""
