"""Election engine — resolution state machine and voting."""
