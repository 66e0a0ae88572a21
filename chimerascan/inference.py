"""Client for the local Ollama inference server."""

import logging
from typing import Optional

import requests
from pydantic import ValidationError

from .errors import EnrichmentError
from .schemas import InferenceResponse

log = logging.getLogger(__name__)


class OllamaClient:
    def __init__(self, base_url: str, model: str, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        # no timeout by default: a slow model stalls the scan, it does not fail it
        self.timeout = timeout or None
        self.session = session or requests.Session()

    def generate(self, prompt: str) -> str:
        url = self.base_url + "/api/generate"
        payload = {"model": self.model, "prompt": prompt, "stream": False}
        try:
            r = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise EnrichmentError(f"inference request failed: {e}") from e

        if r.status_code != 200:
            raise EnrichmentError(f"inference server returned {r.status_code}: {r.text[:200]}")

        try:
            return InferenceResponse.model_validate(r.json()).response
        except (ValueError, ValidationError) as e:
            raise EnrichmentError(f"malformed inference response: {e}") from e
