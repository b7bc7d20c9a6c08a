"""Pure domain types for the trade kernel. Zero I/O."""
