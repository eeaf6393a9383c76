"""
Data Quality Module
"""
from .auditor import AuditReport, ConsistencyAuditor
from .validators import DataValidator, ValidationResult

__all__ = [
    "AuditReport",
    "ConsistencyAuditor",
    "DataValidator",
    "ValidationResult",
]
