"""Tempo - energy battery model and hybrid analysis pipeline."""

__version__ = "0.1.0"
