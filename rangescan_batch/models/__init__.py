"""
rangescan_batch.models -- ORM models for scan persistence.

Architecture: rangescan_batch/models. Imports from rangescan_kernel.db.base only.
"""

from rangescan_batch.models.scan import ScanContinuationModel

__all__ = [
    "ScanContinuationModel",
]
