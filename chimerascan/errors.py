"""Error taxonomy for the scan pipeline."""


class ScanError(Exception):
    """Base class for pipeline errors."""


class InvalidTargetError(ScanError):
    """Target URL rejected before any process was started."""


class ProcessError(ScanError):
    """Scanner could not be started or its output could not be read."""


class ParseError(ScanError):
    """A scanner output line could not be decoded."""


class EnrichmentError(ScanError):
    """An inference call failed or returned something unusable."""


class ReportWriteError(ScanError):
    """A report artifact could not be written."""

    def __init__(self, fmt: str, path: str, reason: str):
        super().__init__(f"{fmt} report {path}: {reason}")
        self.fmt = fmt
        self.path = path


class ScanNotFoundError(ScanError):
    """Unknown scan id, or a scan owned by someone else."""


class InvalidFormatError(ScanError):
    """Unsupported report format requested."""
