import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.enums import Availability, RemotePreference, str_enum


class Candidate(Base):
    __tablename__ = "candidates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    desired_role: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # SeniorityLevel ordinal
    seniority_estimate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    availability: Mapped[Availability] = mapped_column(
        str_enum(Availability), default=Availability.OPEN
    )
    remote_preference: Mapped[RemotePreference | None] = mapped_column(
        str_enum(RemotePreference), nullable=True
    )
    profile_visible: Mapped[bool] = mapped_column(Boolean, default=True)
    open_to_opportunities: Mapped[bool] = mapped_column(Boolean, default=True)
    location_country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location_timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    willing_to_relocate: Mapped[bool] = mapped_column(Boolean, default=False)
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    skills = relationship("CandidateSkill", back_populates="candidate")
    recommendations = relationship("CandidateRecommendation", back_populates="candidate")


class CandidateSkill(Base):
    __tablename__ = "candidate_skills"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    candidate_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("candidates.id"), index=True)
    skill_name: Mapped[str] = mapped_column(String(100))
    confidence_score: Mapped[float] = mapped_column(Float, default=0.5)

    candidate = relationship("Candidate", back_populates="skills")


class CandidateRecommendation(Base):
    __tablename__ = "candidate_recommendations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    candidate_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("candidates.id"), index=True)
    recommender_name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    candidate = relationship("Candidate", back_populates="recommendations")
