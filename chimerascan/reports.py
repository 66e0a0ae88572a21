"""Report rendering: one Report value, three independent artifacts."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .errors import ReportWriteError
from .schemas import SEVERITY_LEVELS, Finding, Report

log = logging.getLogger(__name__)

PRODUCT_NAME = "ChimeraScan"
PDF_TITLE = "ChimeraScan: DAST Scanner for Web Applications"
REPORT_FORMATS = ("json", "pdf", "html")
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def severity_stats(findings: Iterable[Finding]) -> Dict[str, int]:
    stats = {level: 0 for level in SEVERITY_LEVELS}
    for f in findings:
        if f.severity_ai in stats:
            stats[f.severity_ai] += 1
    return stats


def build_report(target_url: str, findings: List[Finding], generated_at: datetime) -> Report:
    return Report(
        target_url=target_url,
        scan_time=generated_at.strftime(TIME_FORMAT),
        findings=list(findings),
        total_count=len(findings),
        severity_stats=severity_stats(findings),
    )


def report_paths(reports_dir: str, scan_id: str, generated_at: datetime) -> Dict[str, str]:
    stamp = int(generated_at.timestamp())
    return {
        fmt: os.path.join(reports_dir, f"chimerascan_report_{scan_id}_{stamp}.{fmt}")
        for fmt in REPORT_FORMATS
    }


# --- JSON -----------------------------------------------------------------

def write_json(report: Report, path: str) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(report.model_dump(by_alias=True), fh, indent=2, ensure_ascii=False)
        fh.write("\n")


# --- PDF ------------------------------------------------------------------

_FONTS = {
    ("Arial", ""): "Helvetica",
    ("Arial", "B"): "Helvetica-Bold",
    ("Arial", "I"): "Helvetica-Oblique",
    ("Courier", ""): "Courier",
}

PAGE_BREAK_Y = 250.0   # mm from the top
PAGE_BOTTOM = 277.0    # mm from the top; multi-line text breaks here
MARGIN_X = 10.0
TEXT_WIDTH = 180.0
LABEL_WIDTH = 40.0


class _PdfPage:
    """Top-down cursor over a reportlab canvas, in millimetres."""

    def __init__(self, path: str):
        self.c = canvas.Canvas(path, pagesize=A4)
        self.page_height = A4[1] / mm
        self.y = 10.0
        self.font = "Helvetica"
        self.size = 10

    def set_font(self, family: str, style: str, size: int) -> None:
        self.font = _FONTS[(family, style)]
        self.size = size
        self.c.setFont(self.font, size)

    def _baseline(self, h: float) -> float:
        # vertically centre the glyphs in a cell of height h
        top = self.y + h / 2 + (self.size * 0.3528) * 0.35
        return (self.page_height - top) * mm

    def cell(self, x: float, h: float, text: str) -> None:
        self.c.drawString(x * mm, self._baseline(h), text)

    def ln(self, h: float) -> None:
        self.y += h

    def multi_cell(self, x: float, w: float, h: float, text: str) -> None:
        for raw in text.splitlines() or [""]:
            for line in simpleSplit(raw, self.font, self.size, w * mm) or [""]:
                if self.y + h > PAGE_BOTTOM:
                    self.add_page(start_y=20.0)
                self.cell(x, h, line)
                self.ln(h)

    def hline(self, x1: float, x2: float) -> None:
        self.c.setStrokeColorRGB(200 / 255, 200 / 255, 200 / 255)
        y = (self.page_height - self.y) * mm
        self.c.line(x1 * mm, y, x2 * mm, y)

    def add_page(self, start_y: float) -> None:
        self.c.showPage()
        self.c.setFont(self.font, self.size)
        self.y = start_y

    def save(self) -> None:
        self.c.save()


def _pdf_field(page: _PdfPage, label: str, value: str) -> None:
    page.set_font("Arial", "B", 10)
    page.cell(MARGIN_X, 8, label)
    page.set_font("Arial", "", 10)
    page.cell(MARGIN_X + LABEL_WIDTH, 8, value)
    page.ln(6)


def _pdf_block(page: _PdfPage, label: str, text: str, code: bool = False) -> None:
    page.set_font("Arial", "B", 10)
    page.cell(MARGIN_X, 8, label)
    page.ln(6)
    if code:
        page.set_font("Courier", "", 8)
        page.multi_cell(MARGIN_X, TEXT_WIDTH, 5, text)
    else:
        page.set_font("Arial", "", 10)
        page.multi_cell(MARGIN_X, TEXT_WIDTH, 6, text)
    page.set_font("Arial", "", 10)


def _pdf_finding(page: _PdfPage, index: int, f: Finding) -> None:
    if page.y > PAGE_BREAK_Y:
        page.add_page(start_y=50.0)

    page.set_font("Arial", "B", 12)
    page.cell(MARGIN_X, 10, f"{index}. {f.info.name}")
    page.ln(8)

    _pdf_field(page, "Template ID:", f.template_id)
    _pdf_field(page, "Severity:", f.severity_ai)
    _pdf_field(page, "Host:", f.host)
    _pdf_field(page, "Matched At:", f.matched_at)
    _pdf_field(page, "IP:", f.ip)
    if f.timestamp:
        _pdf_field(page, "Timestamp:", f.timestamp)

    if f.info.description:
        _pdf_block(page, "Description:", f.info.description)

    if f.info.reference:
        page.set_font("Arial", "B", 10)
        page.cell(MARGIN_X, 8, "References:")
        page.ln(6)
        page.set_font("Arial", "", 10)
        for ref in f.info.reference:
            page.multi_cell(MARGIN_X + 5, TEXT_WIDTH - 5, 6, " " + ref)

    if f.info.tags:
        _pdf_block(page, "Tags:", ", ".join(f.info.tags))

    cls = f.info.classification
    if cls.cve_id or cls.cwe_id:
        page.set_font("Arial", "B", 10)
        page.cell(MARGIN_X, 8, "Classification:")
        page.ln(6)
        page.set_font("Arial", "", 10)
        if cls.cve_id:
            page.cell(MARGIN_X, 6, "CVE:")
            page.cell(MARGIN_X + 10, 6, " " + ", ".join(cls.cve_id))
            page.ln(6)
        if cls.cwe_id:
            page.cell(MARGIN_X, 6, "CWE:")
            page.cell(MARGIN_X + 10, 6, " " + ", ".join(cls.cwe_id))
            page.ln(6)

    if f.curl_command:
        _pdf_block(page, "Curl Command:", f.curl_command, code=True)
    if f.request:
        _pdf_block(page, "Request:", f.request, code=True)

    page.ln(5)
    page.hline(MARGIN_X, MARGIN_X + TEXT_WIDTH)
    page.ln(10)


def write_pdf(report: Report, path: str, generated_at: Optional[datetime] = None) -> None:
    page = _PdfPage(path)
    page.c.setTitle(f"{PRODUCT_NAME} report for {report.target_url}")

    page.set_font("Arial", "B", 16)
    page.y = 15
    page.cell(MARGIN_X, 10, PDF_TITLE)
    page.y = 40

    page.set_font("Arial", "B", 12)
    page.cell(MARGIN_X, 10, "Scan Information:")
    page.ln(8)
    page.set_font("Arial", "", 10)
    for line in (
        f"Target URL: {report.target_url}",
        f"Scan Time: {report.scan_time}",
        f"Total Findings: {report.total_count}",
    ):
        page.cell(MARGIN_X, 8, line)
        page.ln(6)
    page.ln(4)

    page.set_font("Arial", "B", 12)
    page.cell(MARGIN_X, 10, "Severity Statistics:")
    page.ln(8)
    page.set_font("Arial", "", 10)
    for level in SEVERITY_LEVELS:
        page.cell(MARGIN_X, 8, f"{level.capitalize() + ':':<8} {report.severity_stats.get(level, 0)}")
        page.ln(6)
    page.ln(9)

    if report.findings:
        page.set_font("Arial", "B", 14)
        page.cell(MARGIN_X, 10, "Detailed Findings:")
        page.ln(12)
        for i, f in enumerate(report.findings, 1):
            _pdf_finding(page, i, f)
    else:
        page.set_font("Arial", "B", 12)
        page.cell(MARGIN_X, 10, "No vulnerabilities found.")
        page.ln(10)

    stamp = (generated_at or datetime.now()).strftime(TIME_FORMAT)
    page.set_font("Arial", "I", 8)
    page.c.drawCentredString(A4[0] / 2, 12 * mm, f"Generated by {PRODUCT_NAME} on {stamp}")
    page.save()


# --- HTML -----------------------------------------------------------------

def render_html(report: Report) -> str:
    template = _env.get_template("report.html")
    return template.render(report=report, product=PRODUCT_NAME, severity_levels=SEVERITY_LEVELS)


def write_html(report: Report, path: str) -> None:
    html = render_html(report)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(html)


# --- Orchestration ----------------------------------------------------------

@dataclass
class ReportResult:
    report: Report
    paths: Dict[str, str] = field(default_factory=dict)
    errors: Dict[str, ReportWriteError] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.errors and all(fmt in self.paths for fmt in REPORT_FORMATS)

    def discard(self) -> None:
        """Delete every artifact that was written."""
        for path in self.paths.values():
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                log.warning("Could not remove report %s: %s", path, e)
        self.paths.clear()


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


class ReportGenerator:
    def __init__(self, reports_dir: str):
        self.reports_dir = reports_dir

    def _writers(self, generated_at: datetime) -> Dict[str, Callable[[Report, str], None]]:
        return {
            "json": write_json,
            "pdf": lambda report, path: write_pdf(report, path, generated_at),
            "html": write_html,
        }

    def generate(self, scan_id: str, target_url: str, findings: List[Finding],
                 generated_at: Optional[datetime] = None) -> ReportResult:
        """Write all three artifacts; a failing format never stops the others."""
        generated_at = generated_at or datetime.now()
        report = build_report(target_url, findings, generated_at)
        result = ReportResult(report=report)

        try:
            os.makedirs(self.reports_dir, exist_ok=True)
        except OSError as e:
            log.error("Cannot create reports directory %s: %s", self.reports_dir, e)

        paths = report_paths(self.reports_dir, scan_id, generated_at)
        for fmt, writer in self._writers(generated_at).items():
            path = paths[fmt]
            try:
                writer(report, path)
            except Exception as e:
                _remove_partial(path)
                err = ReportWriteError(fmt, path, str(e))
                result.errors[fmt] = err
                log.error("Failed to write %s", err)
                continue
            result.paths[fmt] = path
            log.info("%s report saved: %s", fmt.upper(), path)
        return result
