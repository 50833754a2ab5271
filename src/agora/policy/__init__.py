"""Runtime election policy."""
