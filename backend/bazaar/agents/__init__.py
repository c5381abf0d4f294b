"""Negotiator agent, prompts and the negotiation loop."""
