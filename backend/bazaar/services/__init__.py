"""Matching, decisions, polling and the auto-search orchestrator."""
