import logging
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

MAX_URL_LENGTH = 2000

# anything that could smuggle extra arguments into the scanner command line
DENIED_CHARS = ("`", "$", "(", ")", "{", "}", "[", "]", "|", ";", "&", "<", ">", " ")

LOCAL_HOST_PREFIXES = ("localhost", "127.0.0.1", "0.0.0.0", "::1", "192.168.", "10.", "172.16.")


def is_valid_url(url: str) -> bool:
    """Return True if ``url`` is safe to hand to the scanner.

    Loopback and private-network targets are accepted but logged.
    """
    if not url or len(url) > MAX_URL_LENGTH:
        return False

    lowered = url.lower()
    if not (lowered.startswith("http://") or lowered.startswith("https://")):
        return False

    if any(ch in url for ch in DENIED_CHARS):
        return False

    try:
        parts = urlsplit(url)
        # port parsing is lazy and raises on garbage like ":abc"
        parts.port
    except ValueError:
        return False

    # hostname excludes userinfo and port; netloc only tells us something is there
    host = parts.hostname
    if not parts.netloc or not host:
        return False
    if ".." in host:
        return False

    if host.startswith(LOCAL_HOST_PREFIXES):
        log.warning("Scanning local host %s", host)

    return True
