"""Execution strategies: Single, Bulk and Parallel."""
