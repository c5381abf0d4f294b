"""API schemas and in-process negotiation models."""
