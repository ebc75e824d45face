"""Reconciliation tasks run by the scheduler and worker."""
