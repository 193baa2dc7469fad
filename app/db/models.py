"""
SQLAlchemy models for projects and their build history.
"""
from sqlalchemy import Column, Text, Integer, String, Index, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from app.db.database import Base

# Shared with request validation in app/schemas/platform.py
REPO_URL_MAX_LENGTH = 2048


class Project(Base):
    """A deployable site, one artifact namespace per project name."""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    description = Column(String(255), nullable=True)
    repo_url = Column(String(REPO_URL_MAX_LENGTH), nullable=False, index=True)
    live_url = Column(String(255), nullable=True)
    deploy_status = Column(String(50), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False)

    builds = relationship("Build", back_populates="project", cascade="all, delete-orphan")


class Build(Base):
    """One build attempt. Status goes pending -> success | failed, once."""
    __tablename__ = "builds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    build_status = Column(String(50), nullable=False, default="pending")
    build_number = Column(Integer, nullable=False)
    build_url = Column(String(255), nullable=False)
    build_log = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    project = relationship("Project", back_populates="builds")

    __table_args__ = (
        Index("ix_builds_project_number", "project_id", "build_number", unique=True),
    )
