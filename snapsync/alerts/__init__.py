"""Email alerts."""
