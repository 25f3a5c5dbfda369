"""Adapters to external systems (Redis) and the stateless signed-token codec."""
