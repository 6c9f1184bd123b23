"""
Navigation context - learned page-to-page transitions used for prefetch.
"""

from .navigation_model import NavigationModel

__all__ = ["NavigationModel"]
