# leads_app/models/workspace.py

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db


class Workspace(BaseModel):
    """Tenant boundary: every lead, import run and merge log belongs to one workspace."""

    __tablename__ = "workspaces"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(db.String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, default=True, nullable=False, index=True)

    def __repr__(self):
        return f"<Workspace {self.slug}>"

    @staticmethod
    def find_by_slug(slug):
        """Find workspace by slug with error handling"""
        try:
            return db.session.query(Workspace).filter_by(slug=slug).first()
        except SQLAlchemyError as e:
            current_app.logger.error(f"Database error finding workspace by slug {slug}: {str(e)}")
            return None
