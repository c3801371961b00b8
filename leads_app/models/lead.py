# leads_app/models/lead.py
"""
Lead records plus the dependent history tables a merge must carry over.

A lead is never hard-deleted by the importer. Merged-away leads are
tombstoned through ``merged_into_lead_id`` and archived leads carry
``archived_at``; both are hidden from default listings and dedupe scans.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, and_
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class Lead(BaseModel):
    """Sales lead owned by a workspace."""

    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    business_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    website: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    source: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    niche: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    custom_data: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    email_norm: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    phone_norm: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    domain_norm: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    name_norm: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    city_norm: Mapped[str | None] = mapped_column(db.String(120), nullable=True)

    merged_into_lead_id: Mapped[int | None] = mapped_column(
        ForeignKey("leads.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    archived_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    created_by_import_run_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)

    merged_into = relationship("Lead", remote_side=[id], foreign_keys=[merged_into_lead_id])
    notes = relationship("LeadNote", back_populates="lead", cascade="all, delete-orphan")
    tasks = relationship("LeadTask", back_populates="lead", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_leads_workspace_email_norm", "workspace_id", "email_norm"),
        Index("idx_leads_workspace_phone_norm", "workspace_id", "phone_norm"),
        Index("idx_leads_workspace_domain_norm", "workspace_id", "domain_norm"),
        Index("idx_leads_workspace_city_norm", "workspace_id", "city_norm"),
    )

    def __repr__(self):
        return f"<Lead {self.id} {self.business_name!r}>"

    @property
    def is_tombstoned(self) -> bool:
        return self.merged_into_lead_id is not None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @classmethod
    def visible(cls):
        """Predicate selecting leads that take part in listings and dedupe scans."""
        return and_(cls.merged_into_lead_id.is_(None), cls.archived_at.is_(None))

    def normalized_bag(self) -> dict[str, str | None]:
        return {
            "email_norm": self.email_norm,
            "phone_norm": self.phone_norm,
            "domain_norm": self.domain_norm,
            "name_norm": self.name_norm,
            "city_norm": self.city_norm,
        }

    def apply_normalized(self, bag: dict[str, Any]) -> None:
        for key in ("email_norm", "phone_norm", "domain_norm", "name_norm", "city_norm"):
            setattr(self, key, bag.get(key))


class LeadNote(BaseModel):
    """Free-text activity entry attached to a lead."""

    __tablename__ = "lead_notes"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    body: Mapped[str] = mapped_column(db.Text, nullable=False)

    lead = relationship("Lead", back_populates="notes")


class LeadTask(BaseModel):
    """Scheduled follow-up work for a lead."""

    __tablename__ = "lead_tasks"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[int] = mapped_column(ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(db.String(255), nullable=False)
    due_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    is_done: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    lead = relationship("Lead", back_populates="tasks")
