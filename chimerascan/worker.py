"""Scan lifecycle: submission, background execution, cancellation."""

import json
import logging
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import update

from .config import Settings, load_settings
from .database import SessionLocal
from .enrichment import Enricher
from .errors import (
    InvalidFormatError,
    InvalidTargetError,
    ScanError,
    ScanNotFoundError,
)
from .inference import OllamaClient
from .models import Scan, ScanStatus, Vulnerability
from .parser import parse_output
from .reports import REPORT_FORMATS, ReportGenerator
from .runner import ProcessRegistry, ScannerRunner
from .schemas import Finding, ScanStatusOut
from .validator import is_valid_url

log = logging.getLogger(__name__)

# status -> states it may be entered from; terminal states have no way out
ALLOWED_FROM = {
    ScanStatus.IN_PROGRESS: (ScanStatus.QUEUED,),
    ScanStatus.COMPLETED: (ScanStatus.IN_PROGRESS,),
    ScanStatus.FAILED: (ScanStatus.QUEUED, ScanStatus.IN_PROGRESS),
    ScanStatus.CANCELED: (ScanStatus.QUEUED, ScanStatus.IN_PROGRESS),
}

_PATH_COLUMNS = {"json": "report_json_path", "pdf": "report_pdf_path", "html": "report_html_path"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# fromisoformat before 3.11 takes only 3 or 6 fraction digits; nuclei emits up to 9
_FRACTION_RE = re.compile(r"\.(\d+)")


def _parse_timestamp(value: str) -> Optional[datetime]:
    if not value:
        return None
    value = value.replace("Z", "+00:00")
    value = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _vulnerability_row(scan_id: str, f: Finding) -> Vulnerability:
    return Vulnerability(
        scan_id=scan_id,
        template_id=f.template_id,
        name=f.info.name,
        severity=f.info.severity.lower(),
        severity_ai=f.severity_ai,
        description=f.info.description,
        description_translated=f.description_translated,
        reference=json.dumps(f.info.reference),
        tags=json.dumps(f.info.tags),
        classification=json.dumps(f.info.classification.model_dump(by_alias=True)),
        host=f.host,
        matched_at=f.matched_at,
        ip=f.ip,
        timestamp=_parse_timestamp(f.timestamp),
        curl_command=f.curl_command,
        request=f.request,
        response=f.response,
        metadata_json=json.dumps(f.metadata, default=str),
        recommendation_ai=f.recommendation_ai,
    )


@dataclass
class ScanTask:
    scan_id: str
    target_url: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)


class ScanManager:
    """Owns every scan status write.

    Each submitted scan runs as one task on a thread pool. Status changes are
    conditional updates (see ALLOWED_FROM), so a cancel that has been written
    can never be overwritten by a late Completed or Failed from the task.
    """

    def __init__(
        self,
        session_factory=None,
        runner=None,
        enricher: Optional[Enricher] = None,
        reports: Optional[ReportGenerator] = None,
        settings: Optional[Settings] = None,
        registry: Optional[ProcessRegistry] = None,
        executor=None,
    ):
        self.settings = settings or load_settings()
        self.session_factory = session_factory or SessionLocal
        if registry is None:
            registry = getattr(runner, "registry", None)
        self.registry = registry if registry is not None else ProcessRegistry()
        self.runner = runner or ScannerRunner(self.settings.scanner_command, self.registry)
        self.enricher = enricher or Enricher(
            OllamaClient(
                self.settings.inference_url,
                self.settings.inference_model,
                timeout=self.settings.inference_timeout,
            ),
            language=self.settings.translation_language,
        )
        self.reports = reports or ReportGenerator(self.settings.reports_dir)
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="scan"
        )
        self._tasks: Dict[str, ScanTask] = {}
        self._tasks_lock = threading.Lock()

    # --- state transitions ---------------------------------------------------

    def _transition(self, session, scan_id: str, status: ScanStatus, **values) -> bool:
        sources = [s.value for s in ALLOWED_FROM[status]]
        stmt = (
            update(Scan)
            .where(Scan.id == scan_id, Scan.status.in_(sources))
            .values(status=status.value, **values)
            .execution_options(synchronize_session=False)
        )
        moved = session.execute(stmt).rowcount == 1
        if not moved:
            log.info("Scan %s: transition to %s skipped, state already moved on", scan_id, status.value)
        return moved

    def _set_status(self, scan_id: str, status: ScanStatus, **values) -> bool:
        with self.session_factory() as session:
            moved = self._transition(session, scan_id, status, **values)
            session.commit()
        return moved

    def _complete(self, scan_id: str, raw_output: str, findings: List[Finding], paths: Dict[str, str]) -> bool:
        """Completed, finish time, raw output, artifact paths and findings in one commit."""
        values = {_PATH_COLUMNS[fmt]: paths.get(fmt) for fmt in REPORT_FORMATS}
        with self.session_factory() as session:
            if not self._transition(
                session, scan_id, ScanStatus.COMPLETED,
                finished_at=_now(), raw_output=raw_output, **values
            ):
                session.rollback()
                return False
            session.add_all([_vulnerability_row(scan_id, f) for f in findings])
            session.commit()
        return True

    # --- background task -----------------------------------------------------

    def _run(self, task: ScanTask) -> None:
        try:
            self._execute(task)
        except ScanError as e:
            log.error("Scan %s failed: %s", task.scan_id, e)
            self._set_status(task.scan_id, ScanStatus.FAILED, finished_at=_now())
        except Exception:
            log.exception("Scan %s crashed", task.scan_id)
            self._set_status(task.scan_id, ScanStatus.FAILED, finished_at=_now())
        finally:
            with self._tasks_lock:
                self._tasks.pop(task.scan_id, None)
            task.done.set()

    def _execute(self, task: ScanTask) -> None:
        scan_id, target_url, canceled = task.scan_id, task.target_url, task.cancel_event

        if not is_valid_url(target_url):
            raise InvalidTargetError(f"invalid target URL format: {target_url!r}")

        if not self._set_status(scan_id, ScanStatus.IN_PROGRESS, started_at=_now()):
            return

        log.info("Starting scan for %s (ID: %s)", target_url, scan_id)
        output = self.runner.run(scan_id, target_url, canceled)
        if canceled.is_set():
            log.info("Scan %s canceled while the scanner was running", scan_id)
            return

        raw_output = output.stdout.decode("utf-8", errors="replace")
        findings = parse_output(output.stdout)
        if findings:
            findings = self.enricher.enrich_all(findings, canceled)
        if canceled.is_set():
            log.info("Scan %s canceled during enrichment", scan_id)
            return

        result = self.reports.generate(scan_id, target_url, findings)
        if canceled.is_set():
            result.discard()
            return

        if not result.paths or (self.settings.require_all_reports and not result.complete):
            failed = ", ".join(sorted(result.errors)) or "all formats"
            result.discard()
            raise ScanError(f"report generation incomplete ({failed} failed)")

        try:
            completed = self._complete(scan_id, raw_output, findings, result.paths)
        except Exception:
            result.discard()
            raise
        if not completed:
            # lost to a cancel; keep the no-artifacts invariant
            result.discard()
            return
        log.info("Scan completed for %s. Found %d vulnerabilities", target_url, len(findings))

    # --- caller operations ---------------------------------------------------

    def submit(self, target_url: str, owner_id: str, project_id: Optional[str] = None) -> str:
        """Record a Queued scan and start it in the background. Returns the scan id."""
        scan = Scan(
            target_url=target_url,
            user_id=owner_id,
            project_id=project_id or None,
            status=ScanStatus.QUEUED.value,
        )
        with self.session_factory() as session:
            session.add(scan)
            session.commit()
            scan_id = scan.id

        task = ScanTask(scan_id=scan_id, target_url=target_url)
        with self._tasks_lock:
            self._tasks[scan_id] = task
        self.executor.submit(self._run, task)
        return scan_id

    def _owned(self, session, scan_id: str, owner_id: str) -> Scan:
        scan = session.get(Scan, scan_id)
        if scan is None or scan.user_id != owner_id:
            raise ScanNotFoundError(f"scan {scan_id} not found")
        return scan

    def get_scan(self, scan_id: str, owner_id: str) -> Scan:
        with self.session_factory() as session:
            return self._owned(session, scan_id, owner_id)

    def status(self, scan_id: str, owner_id: str) -> ScanStatusOut:
        scan = self.get_scan(scan_id, owner_id)
        return ScanStatusOut(status=scan.status, started_at=scan.started_at, finished_at=scan.finished_at)

    def list_scans(self, owner_id: str) -> List[Scan]:
        with self.session_factory() as session:
            return (
                session.query(Scan)
                .filter(Scan.user_id == owner_id)
                .order_by(Scan.created_at.desc())
                .all()
            )

    def stop(self, scan_id: str, owner_id: str) -> str:
        """Cancel a queued or running scan; returns the status afterwards.

        The Canceled write happens here, before the task notices.
        """
        with self.session_factory() as session:
            self._owned(session, scan_id, owner_id)
            canceled = self._transition(session, scan_id, ScanStatus.CANCELED, finished_at=_now())
            session.commit()

        with self._tasks_lock:
            task = self._tasks.get(scan_id)
        if task is not None:
            task.cancel_event.set()
        if self.registry.kill(scan_id):
            log.info("Killed scanner process for scan %s", scan_id)
        if canceled:
            log.info("Scan %s canceled", scan_id)
        return self.get_scan(scan_id, owner_id).status

    def artifact_path(self, scan_id: str, owner_id: str, fmt: str) -> str:
        if fmt not in REPORT_FORMATS:
            raise InvalidFormatError(f"invalid format {fmt!r}")
        scan = self.get_scan(scan_id, owner_id)
        path = getattr(scan, _PATH_COLUMNS[fmt])
        if not path:
            raise ScanNotFoundError("report not found")
        if not os.path.exists(path):
            raise ScanNotFoundError("report file not found")
        return path

    def join(self, scan_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for a scan's background task. True if it is no longer running."""
        with self._tasks_lock:
            task = self._tasks.get(scan_id)
        if task is None:
            return True
        return task.done.wait(timeout)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
