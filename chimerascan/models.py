import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, func

from .database import Base


class ScanStatus(str, enum.Enum):
    QUEUED = "Queued"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELED = "Canceled"


TERMINAL_STATUSES = (ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELED)


def _new_id() -> str:
    return str(uuid.uuid4())


class Scan(Base):
    __tablename__ = "scans"

    id = Column(String(36), primary_key=True, default=_new_id)
    target_url = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default=ScanStatus.QUEUED.value, index=True)
    project_id = Column(String(36), nullable=True)
    user_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    raw_output = Column(Text)
    report_json_path = Column(Text)
    report_pdf_path = Column(Text)
    report_html_path = Column(Text)


class Vulnerability(Base):
    __tablename__ = "vulnerabilities"

    id = Column(String(36), primary_key=True, default=_new_id)
    scan_id = Column(String(36), ForeignKey("scans.id", ondelete="CASCADE"), nullable=False, index=True)
    template_id = Column(String(255))
    name = Column(Text)
    severity = Column(String(32))
    severity_ai = Column(String(32))
    description = Column(Text)
    description_translated = Column(Text)
    reference = Column(Text)       # JSON list
    tags = Column(Text)            # JSON list
    classification = Column(Text)  # JSON object
    host = Column(Text)
    matched_at = Column(Text)
    ip = Column(String(64))
    timestamp = Column(DateTime(timezone=True))
    curl_command = Column(Text)
    request = Column(Text)
    response = Column(Text)
    metadata_json = Column("metadata", Text)
    recommendation_ai = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
