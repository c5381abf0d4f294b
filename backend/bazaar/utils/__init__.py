"""Logging, exceptions and text helpers."""
