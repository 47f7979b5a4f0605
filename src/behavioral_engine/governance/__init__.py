"""Governance: policy resolution and the execution log."""
