"""
Set-based association testing methods
"""

from .mbat import MBAT_Test, joint_chisq, SingularCovarianceError

__all__ = ['MBAT_Test', 'joint_chisq', 'SingularCovarianceError']
