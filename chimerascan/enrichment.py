import logging
import threading
from typing import List, Optional, Protocol

from .errors import EnrichmentError
from .schemas import SEVERITY_LEVELS, Finding

log = logging.getLogger(__name__)

DEFAULT_SEVERITY = "medium"
AI_ERROR_PREFIX = "AI error: "

SEVERITY_PROMPT = """Rate the risk of this vulnerability. Answer with exactly one of: info, low, medium, high.
Rules:
- info: NO need to fix, no threat at all
- low: the SLIGHTEST chance of compromise or minimal risk
- medium: moderate risk, needs attention
- high: high risk, fix urgently

Vulnerability: {name}
Description: {description}
Location: {matched_at}
Host: {host}
CURL command: {curl_command}
Request: {request}
Tags: {tags}
CVE classification: {cve}
CWE classification: {cwe}

Answer with one word only:"""

TRANSLATION_PROMPT = 'Translate into {language}, concisely and with technical accuracy, no preamble: "{description}"'

REMEDIATION_PROMPT = """Give very brief remediation advice in {language} for this vulnerability.
No preamble, go straight to how to fix it. Practical steps only.

Vulnerability: {name}
Description: {description}
Risk level: {severity}

Recommendations:"""


class InferenceClient(Protocol):
    def generate(self, prompt: str) -> str:
        ...


def normalize_severity(text: str) -> str:
    value = text.strip().lower()
    return value if value in SEVERITY_LEVELS else DEFAULT_SEVERITY


class Enricher:
    """Adds AI severity, translated description and remediation to findings."""

    def __init__(self, client: InferenceClient, language: str = "Russian"):
        self.client = client
        self.language = language

    def _ask(self, prompt: str) -> str:
        try:
            return self.client.generate(prompt).strip()
        except EnrichmentError as e:
            log.warning("Inference call failed: %s", e)
            return f"{AI_ERROR_PREFIX}{e}"

    def severity(self, finding: Finding) -> str:
        info = finding.info
        prompt = SEVERITY_PROMPT.format(
            name=info.name,
            description=info.description,
            matched_at=finding.matched_at,
            host=finding.host,
            curl_command=finding.curl_command,
            request=finding.request,
            tags=", ".join(info.tags),
            cve=", ".join(info.classification.cve_id),
            cwe=", ".join(info.classification.cwe_id),
        )
        return normalize_severity(self._ask(prompt))

    def translate(self, description: str) -> str:
        if not description:
            return ""
        return self._ask(TRANSLATION_PROMPT.format(language=self.language, description=description))

    def remediation(self, finding: Finding, severity: str) -> str:
        prompt = REMEDIATION_PROMPT.format(
            language=self.language,
            name=finding.info.name,
            description=finding.info.description,
            severity=severity,
        )
        return self._ask(prompt)

    def enrich(self, finding: Finding) -> Finding:
        severity = self.severity(finding)
        translated = self.translate(finding.info.description)
        recommendation = self.remediation(finding, severity)
        return finding.model_copy(update={
            "severity_ai": severity,
            "description_translated": translated,
            "recommendation_ai": recommendation,
        })

    def enrich_all(self, findings: List[Finding], cancel_event: Optional[threading.Event] = None) -> List[Finding]:
        """Enrich findings one at a time, in order.

        Stops early (returning what was done so far) once ``cancel_event`` is set.
        """
        enriched: List[Finding] = []
        total = len(findings)
        for i, finding in enumerate(findings, 1):
            if cancel_event is not None and cancel_event.is_set():
                log.info("Enrichment interrupted at %d/%d", i, total)
                break
            log.info("AI analysis %d/%d...", i, total)
            enriched.append(self.enrich(finding))
        return enriched
