"""
AWS teardown for the EKS cluster and everything eksctl created around it.
"""

from .models import FoundResource, StepOutcome, CleanupReport, VerificationResult
from .sweep import ClusterJanitor

__all__ = [
    "ClusterJanitor",
    "FoundResource",
    "StepOutcome",
    "CleanupReport",
    "VerificationResult",
]
