"""Signature Reconciler - archives and purges stale petition signature records."""

__version__ = "0.1.0"
