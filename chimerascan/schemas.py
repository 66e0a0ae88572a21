"""Typed records for scanner output, inference replies and reports."""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

SEVERITY_LEVELS = ("info", "low", "medium", "high")


def _as_str_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    return value


def _as_text(value: Any) -> Any:
    return "" if value is None else value


def _as_mapping(value: Any) -> Any:
    return {} if value is None else value


Text = Annotated[str, BeforeValidator(_as_text)]
StrList = Annotated[List[str], BeforeValidator(_as_str_list)]


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Classification(_Wire):
    cve_id: StrList = Field(default_factory=list, alias="cve-id")
    cwe_id: StrList = Field(default_factory=list, alias="cwe-id")


class FindingInfo(_Wire):
    name: Text = ""
    severity: Text = ""
    description: Text = ""
    reference: StrList = Field(default_factory=list)
    tags: StrList = Field(default_factory=list)
    classification: Annotated[Classification, BeforeValidator(_as_mapping)] = Field(
        default_factory=Classification
    )


class Finding(_Wire):
    """One scanner-reported issue, plus the three enrichment fields."""

    template_id: Text = Field("", alias="template-id")
    info: Annotated[FindingInfo, BeforeValidator(_as_mapping)] = Field(default_factory=FindingInfo)
    host: Text = ""
    matched_at: Text = Field("", alias="matched-at")
    ip: Text = ""
    timestamp: Text = ""
    curl_command: Text = Field("", alias="curl-command")
    request: Text = ""
    response: Text = ""
    metadata: Annotated[Dict[str, Any], BeforeValidator(_as_mapping)] = Field(default_factory=dict)

    severity_ai: Text = ""
    description_translated: Text = ""
    recommendation_ai: Text = ""

    @property
    def display_description(self) -> str:
        return self.description_translated or self.info.description


class InferenceResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    response: str


class Report(BaseModel):
    target_url: str
    scan_time: str
    findings: List[Finding] = Field(default_factory=list)
    total_count: int = 0
    severity_stats: Dict[str, int] = Field(default_factory=dict)


class ScanRequest(BaseModel):
    target_url: str
    project_id: Optional[str] = None


class ScanStatusOut(BaseModel):
    status: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ScanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    target_url: str
    status: str
    project_id: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
