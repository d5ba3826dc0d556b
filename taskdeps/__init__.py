"""Task dependency graph engine."""
