"""Rate limiting adapters.

This package holds the throttling engine: identifier derivation, the policy
catalog, the in-memory record store with its decision function, and the
background sweeper that keeps the store bounded.
"""
