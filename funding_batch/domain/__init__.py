"""Pure automation types and schedule evaluation (ZERO I/O)."""
