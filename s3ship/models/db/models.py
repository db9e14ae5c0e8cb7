from sqlalchemy import (
    Column, String, Text, Enum, Integer, Float, Boolean, ForeignKey, DateTime
)
from sqlalchemy.orm import declarative_base, relationship
import uuid
from datetime import datetime, timezone


Base = declarative_base()

def gen_uuid():
    return str(uuid.uuid4())

RUN_STATUSES = ("Pending", "Packing", "Uploading", "Succeeded", "PartiallyFailed", "Failed")
OUTCOMES = ("pending", "success", "failed", "cancelled")


class DeploymentRunRecord(Base):
    __tablename__ = "deployment_runs"
    id = Column(String, primary_key=True, default=gen_uuid)
    branch = Column(Text, nullable=False)
    commit_sha = Column(String, default="")
    environment_override = Column(Text)
    artifact_hash = Column(String)
    status = Column(Enum(*RUN_STATUSES, name="run_status_enum"), nullable=False)
    error = Column(Text)
    started_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    finished_at = Column(DateTime(timezone=True))
    attempts = relationship(
        "UploadAttemptRecord",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="UploadAttemptRecord.seq",
    )


# credential references are deliberately absent from this table
class UploadAttemptRecord(Base):
    __tablename__ = "upload_attempts"
    id = Column(String, primary_key=True, default=gen_uuid)
    run_id = Column(String, ForeignKey("deployment_runs.id"), nullable=False)
    seq = Column(Integer, nullable=False)
    target = Column(Text, nullable=False)
    artifact_hash = Column(String, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    outcome = Column(Enum(*OUTCOMES, name="upload_outcome_enum"), nullable=False)
    error = Column(Text)
    error_kind = Column(String)
    skipped_existing = Column(Boolean, default=False)
    delay_before = Column(Float, default=0.0)
    finished_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    run = relationship("DeploymentRunRecord", back_populates="attempts")
