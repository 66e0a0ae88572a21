"""ChimeraScan: runs a DAST scanner against a URL and writes AI-annotated reports."""

__version__ = "0.1.0"
