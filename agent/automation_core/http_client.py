"""
The requests session reports go out on.

One pooled session per process, owned by the report thread. POSTs are
retried on gateway errors; a network failure replaces the session so the
next report does not reuse a dead keep-alive connection.
"""

import os

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import log
from .constants import LIBRARY_VERSION

USER_AGENT = f"qa-automation-agent/{LIBRARY_VERSION}"


def _report_retry():
    # 3 attempts after the first, 1s/2s/4s apart
    return Retry(
        total=3,
        connect=3,
        read=1,
        backoff_factor=1,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset({"POST"}),
        raise_on_status=False,
    )


def ca_bundle():
    """REQUESTS_CA_BUNDLE / SSL_CERT_FILE if they point at a file, else certifi's bundle."""
    for var in ("REQUESTS_CA_BUNDLE", "SSL_CERT_FILE"):
        path = os.environ.get(var)
        if path and os.path.isfile(path):
            return path
    return certifi.where()


def create_session():
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=1, max_retries=_report_retry())
    for prefix in ("https://", "http://"):
        session.mount(prefix, adapter)
    session.verify = ca_bundle()
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    return session


def reset_session(session):
    """Drop ``session`` and its pooled connections, returning a fresh one."""
    try:
        session.close()
    except Exception as e:
        log.debug("Closing HTTP session failed: %s", e)
    return create_session()


http = create_session()
