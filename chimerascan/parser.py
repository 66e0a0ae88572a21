import json
import logging
from typing import List, Union

from pydantic import ValidationError

from .errors import ParseError
from .schemas import Finding

log = logging.getLogger(__name__)


def parse_line(line: str) -> Finding:
    """Decode one JSON-lines record, raising ParseError on anything else."""
    try:
        data = json.loads(line)
    except ValueError as e:
        raise ParseError(f"not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"expected a JSON object, got {type(data).__name__}")
    try:
        return Finding.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"bad finding: {e.error_count()} field error(s)") from e


def parse_output(output: Union[bytes, str]) -> List[Finding]:
    """Turn the scanner's stdout into findings, in source order.

    Lines that do not decode (scanner diagnostics, truncated records) are
    dropped; they never abort the batch.
    """
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")

    findings: List[Finding] = []
    dropped = 0
    for line in output.split("\n"):
        line = line.strip()
        if not line:
            continue
        try:
            findings.append(parse_line(line))
        except ParseError as e:
            dropped += 1
            log.debug("Dropping scanner line: %s", e)

    if dropped:
        log.info("Parsed %d finding(s), dropped %d undecodable line(s)", len(findings), dropped)
    return findings
