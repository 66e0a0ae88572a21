import json
import threading

from chimerascan.errors import EnrichmentError
from chimerascan.runner import ScanOutput


def nuclei_line(template_id, name, severity, **extra):
    record = {
        "template-id": template_id,
        "info": {"name": name, "severity": severity, "description": extra.pop("description", "")},
        "host": extra.pop("host", "https://example.com"),
        "matched-at": extra.pop("matched_at", "https://example.com/"),
        "ip": extra.pop("ip", "93.184.216.34"),
    }
    record.update(extra)
    return json.dumps(record)


class FakeInference:
    """Answers by prompt kind; severity answers are keyed by finding name."""

    def __init__(self, severities=None, fail=False):
        self.severities = severities or {}
        self.fail = fail
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise EnrichmentError("connection refused")
        if prompt.startswith("Rate the risk"):
            for name, severity in self.severities.items():
                if f"Vulnerability: {name}\n" in prompt:
                    return f"  {severity.upper()}\n"
            return "medium"
        if prompt.startswith("Translate"):
            return " translated text "
        return "Apply the vendor patch."


class FakeRunner:
    def __init__(self, stdout=b"", returncode=0, error=None, block=False):
        self.stdout = stdout
        self.returncode = returncode
        self.error = error
        self.calls = []
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()

    def run(self, scan_id, target_url, cancel_event=None):
        self.calls.append(target_url)
        self.started.set()
        self.release.wait(10)
        if self.error is not None:
            raise self.error
        return ScanOutput(stdout=self.stdout, returncode=self.returncode)


class ManualExecutor:
    """Holds submitted work until run_all(); makes lifecycle tests deterministic."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args):
        self.pending.append((fn, args))

    def run_all(self):
        while self.pending:
            fn, args = self.pending.pop(0)
            fn(*args)

    def shutdown(self, wait=True):
        self.pending.clear()
