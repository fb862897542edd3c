"""Shared HTTP session for the MESH servers and the notification webhook."""

from __future__ import annotations

from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from hail_intel import __version__

USER_AGENT = f"hail-intel/{__version__}"


def create_session(
    retries: int = 2,
    backoff_factor: float = 0.5,
    status_forcelist: tuple[int, ...] = (429, 502, 503, 504),
    allowed_methods: tuple[str, ...] = ("GET",),
) -> Session:
    """Create a requests Session that retries idempotent calls with backoff.

    The MESH servers sleep when idle, so the first request after a quiet
    spell often meets a 502/503 while the instance boots; two quick retries
    usually ride that out inside the per-tier timeout.  Read timeouts are
    never retried: a server that accepted the request but went quiet has
    timed out, and the tier fails over instead.  Webhook POSTs are not
    retried unless ``allowed_methods`` says so.
    """
    retry = Retry(
        total=retries,
        connect=retries,
        read=0,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=list(allowed_methods),
        raise_on_status=False,
    )
    session = Session()
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    adapter = HTTPAdapter(max_retries=retry)
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    return session
