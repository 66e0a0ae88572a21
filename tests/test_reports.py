import json
import os
import re
from datetime import datetime

import pytest

from chimerascan import reports
from chimerascan.parser import parse_line
from chimerascan.reports import ReportGenerator, build_report, render_html, severity_stats

from .helpers import nuclei_line

GENERATED_AT = datetime(2025, 3, 1, 12, 30, 45)


def _enriched(name, severity_ai, **extra):
    finding = parse_line(nuclei_line(name.lower().replace(" ", "-"), name, "info", **extra))
    return finding.model_copy(update={
        "severity_ai": severity_ai,
        "recommendation_ai": f"Fix {name}",
    })


def test_severity_stats_empty():
    assert severity_stats([]) == {"info": 0, "low": 0, "medium": 0, "high": 0}


def test_severity_stats_counts_sum_to_total():
    levels = ["high", "low", "low", "info", "medium", "high", "high"]
    stats = severity_stats([_enriched(f"F{i}", s) for i, s in enumerate(levels)])
    assert stats == {"info": 1, "low": 2, "medium": 1, "high": 3}
    assert sum(stats.values()) == len(levels)
    assert list(stats) == ["info", "low", "medium", "high"]


def test_build_report():
    findings = [_enriched("A", "high"), _enriched("B", "low")]
    report = build_report("https://example.com", findings, GENERATED_AT)

    assert report.scan_time == "2025-03-01 12:30:45"
    assert report.total_count == 2
    assert [f.info.name for f in report.findings] == ["A", "B"]
    assert report.severity_stats == {"info": 0, "low": 1, "medium": 0, "high": 1}


def test_generate_writes_three_artifacts(tmp_path):
    findings = [
        _enriched("Exposed Panel", "high", description="Admin panel", timestamp="2025-03-01T12:00:00Z"),
        _enriched("Missing Header", "low"),
    ]
    result = ReportGenerator(str(tmp_path / "out")).generate("scan-1", "https://example.com", findings, GENERATED_AT)

    assert result.complete
    assert result.errors == {}
    stamp = int(GENERATED_AT.timestamp())
    for fmt in ("json", "pdf", "html"):
        path = result.paths[fmt]
        assert os.path.basename(path) == f"chimerascan_report_scan-1_{stamp}.{fmt}"
        assert os.path.exists(path)

    with open(result.paths["json"], encoding="utf-8") as fh:
        data = json.load(fh)
    assert list(data) == ["target_url", "scan_time", "findings", "total_count", "severity_stats"]
    assert data["total_count"] == 2
    assert data["severity_stats"] == {"info": 0, "low": 1, "medium": 0, "high": 1}
    assert data["findings"][0]["template-id"] == "exposed-panel"
    assert data["findings"][0]["matched-at"] == "https://example.com/"
    assert data["findings"][0]["severity_ai"] == "high"

    with open(result.paths["pdf"], "rb") as fh:
        assert fh.read(5) == b"%PDF-"


def test_html_badges_and_conditional_blocks():
    findings = [
        _enriched("Exposed Panel", "high", description="Admin panel", timestamp="2025-03-01T12:00:00Z"),
        _enriched("Missing Header", "low"),
    ]
    html = render_html(build_report("https://example.com", findings, GENERATED_AT))

    assert 'class="severity high-sev"' in html
    assert 'class="severity low-sev"' in html
    assert html.index("Exposed Panel") < html.index("Missing Header")
    assert html.count("Timestamp:") == 1
    assert html.count("Description:") == 1
    assert "References:" not in html
    assert "Fix Exposed Panel" in html
    assert "No vulnerabilities found." not in html


def test_html_prefers_translated_description():
    finding = _enriched("X", "info", description="original").model_copy(
        update={"description_translated": "translated"}
    )
    html = render_html(build_report("https://example.com", [finding], GENERATED_AT))
    assert "translated" in html
    assert "original" not in html


def test_html_escapes_scanner_content():
    finding = _enriched("<script>alert(1)</script>", "medium")
    html = render_html(build_report("https://example.com", [finding], GENERATED_AT))
    assert "<script>alert(1)</script>" not in html
    assert "&lt;script&gt;" in html


def test_zero_findings_render_notice(tmp_path):
    result = ReportGenerator(str(tmp_path)).generate("empty", "https://example.com", [], GENERATED_AT)

    assert result.complete
    with open(result.paths["html"], encoding="utf-8") as fh:
        assert "No vulnerabilities found." in fh.read()
    with open(result.paths["json"], encoding="utf-8") as fh:
        assert json.load(fh)["findings"] == []


def test_long_reports_span_several_pages(tmp_path):
    findings = [
        _enriched(f"Finding {i}", "medium", description="word " * 80, **{"request": "GET / HTTP/1.1\nHost: x\n" * 5})
        for i in range(12)
    ]
    path = str(tmp_path / "long.pdf")
    reports.write_pdf(build_report("https://example.com", findings, GENERATED_AT), path, GENERATED_AT)

    with open(path, "rb") as fh:
        pages = re.findall(rb"/Type\s*/Page(?![s\w])", fh.read())
    assert len(pages) > 1


def test_one_failing_format_does_not_stop_the_others(tmp_path, monkeypatch):
    def broken(report, path):
        with open(path, "w") as fh:
            fh.write("{")
        raise OSError("disk full")

    monkeypatch.setattr(reports, "write_json", broken)
    result = ReportGenerator(str(tmp_path)).generate("s", "https://example.com", [_enriched("A", "low")], GENERATED_AT)

    assert not result.complete
    assert set(result.paths) == {"pdf", "html"}
    assert set(result.errors) == {"json"}
    assert not any(name.endswith(".json") for name in os.listdir(tmp_path))


def test_discard_removes_written_files(tmp_path):
    result = ReportGenerator(str(tmp_path)).generate("s", "https://example.com", [], GENERATED_AT)
    result.discard()
    assert os.listdir(tmp_path) == []
    assert result.paths == {}


@pytest.mark.parametrize("fmt", ["json", "pdf", "html"])
def test_report_paths_live_under_reports_dir(tmp_path, fmt):
    paths = reports.report_paths(str(tmp_path), "abc", GENERATED_AT)
    assert os.path.dirname(paths[fmt]) == str(tmp_path)
