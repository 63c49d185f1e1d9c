"""Treated event detection."""

from .events import TreatedEvent, TreatmentEventDetector

__all__ = ["TreatedEvent", "TreatmentEventDetector"]
