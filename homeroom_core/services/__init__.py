# =============================================================================
# homeroom_core/services/__init__.py
# Service Layer on top of the offline data engine
# =============================================================================
"""
Service Layer

Business summaries computed from the local snapshot, kept apart from the
Streamlit pages that display them.

Usage Example:
-------------
    from homeroom_core.offline import create_data_service
    from homeroom_core.services import ReportService

    reports = ReportService(create_data_service())
    result = reports.monthly("c1", month=2, year=2024)
    if result.success:
        print(result.data["content"])
"""

from .base_service import BaseService, ServiceResult
from .report_service import ReportService

__all__ = [
    "BaseService",
    "ServiceResult",
    "ReportService",
]
