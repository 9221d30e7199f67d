"""Logging and metrics for namespace-reconciler."""
