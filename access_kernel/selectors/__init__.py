"""Read-only query objects."""

from access_kernel.selectors.approval_request_selector import ApprovalRequestSelector
from access_kernel.selectors.base import BaseSelector
from access_kernel.selectors.catalog_resolver import CatalogResolver

__all__ = [
    "ApprovalRequestSelector",
    "BaseSelector",
    "CatalogResolver",
]
