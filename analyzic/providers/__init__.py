"""Capability providers and the registry that holds them."""
