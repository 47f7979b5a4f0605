"""Behavioral Engine - Behavioral Risk Orchestration Pipeline."""

__version__ = "0.1.0"
__author__ = "Behavioral Engine Team"
