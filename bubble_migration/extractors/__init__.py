"""Source-system extractors."""

from .base import BaseExtractor, ListPage
from .bubble_extractor import BubbleClient

__all__ = [
    "BaseExtractor",
    "ListPage",
    "BubbleClient",
]
