"""Console chat helpers."""
