"""Jiva volume resources, policies, manifests, reconciliation and node-side helpers."""

__version__ = "0.1.0"