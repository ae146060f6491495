"""Pure domain types for the returns kernel. Zero I/O."""
