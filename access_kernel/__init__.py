"""
Access Kernel - approval-governed access management hub.

Catalog plugins describe approval flows and resource types in code; the
kernel runs the approval request lifecycle on top of them with:
- Compare-and-swap status transitions
- Handler calls isolated on a timed worker pool
- Resource updates gated behind a single pending approval
- Scheduled auto-revoke and audit notifications
"""

__version__ = "0.1.0"
