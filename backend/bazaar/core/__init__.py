"""Configuration, persistence and the event broker."""
