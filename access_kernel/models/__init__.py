"""
SQLAlchemy ORM models for the access hub.

Importing this package registers every table on ``Base.metadata``.
"""

from access_kernel.models.approval_request import ApprovalRequestModel
from access_kernel.models.governance import (
    ApprovalFlowGovernanceModel,
    CatalogGovernanceModel,
)
from access_kernel.models.resource import ResourceModel
from access_kernel.models.scheduler_event import SchedulerEventModel

__all__ = [
    "ApprovalRequestModel",
    "ApprovalFlowGovernanceModel",
    "CatalogGovernanceModel",
    "ResourceModel",
    "SchedulerEventModel",
]
