"""
LD matrix construction and collinearity reduction
"""

from .correlation import MBAT_LD
from .vif import MBAT_VIF

__all__ = ['MBAT_LD', 'MBAT_VIF']
