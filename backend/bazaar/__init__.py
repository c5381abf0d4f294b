"""Agent Bazaar: marketplace where buyer agents negotiate with seller agents over A2A."""

__version__ = "0.1.0"
