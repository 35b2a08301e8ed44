"""
Module: access_kernel.models.governance
Responsibility: ORM persistence for the mutable governance fields of
    catalogs and approval flows (owner group, approver group).

Architecture position: Kernel > Models.  May import from db/base.py only.

A row exists only once somebody assigns a group.  Absence means "no
group", never "no catalog": catalog existence is decided by the registry.
"""

from __future__ import annotations

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from access_kernel.db.base import Base


class CatalogGovernanceModel(Base):
    __tablename__ = "catalog_governance"

    catalog_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    owner_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    def __repr__(self) -> str:
        return f"<CatalogGovernance {self.catalog_id} owner={self.owner_group_id}>"


class ApprovalFlowGovernanceModel(Base):
    __tablename__ = "approval_flow_governance"

    __table_args__ = (
        UniqueConstraint(
            "catalog_id", "approval_flow_id",
            name="uq_approval_flow_governance_flow",
        ),
    )

    catalog_id: Mapped[str] = mapped_column(String(128), nullable=False)
    approval_flow_id: Mapped[str] = mapped_column(String(128), nullable=False)
    approver_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalFlowGovernance {self.catalog_id}/{self.approval_flow_id} "
            f"approver={self.approver_group_id}>"
        )
