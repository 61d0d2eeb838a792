"""Event broadcast."""
