"""Transaction aggregation and live notification inbox for the finance dashboard."""
