"""cadence command-line interface."""
