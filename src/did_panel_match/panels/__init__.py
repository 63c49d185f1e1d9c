"""Panel indexing."""

from .index import PanelIndex, PanelRecord

__all__ = ["PanelIndex", "PanelRecord"]
