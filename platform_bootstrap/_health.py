"""HTTP and TCP health checks used as readiness probes."""

from __future__ import annotations

import socket
from collections.abc import Callable

import requests
import urllib3

from ._readiness import Probe


def http_probe(
    url: str,
    *,
    expect_text: str | None = None,
    verify: bool = True,
    timeout: float = 10.0,
    session: requests.Session | None = None,
) -> Callable[[], Probe]:
    """Return a check that is ready once ``url`` answers 2xx (with ``expect_text``).

    Connection errors and non-2xx answers count as not ready. Self-signed
    management endpoints need ``verify=False``. Without ``session`` each
    attempt uses a one-off connection, so nothing stays open between polls.
    """

    get = session.get if session is not None else requests.get
    if not verify:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def check() -> Probe:
        try:
            response = get(url, timeout=timeout, verify=verify)
        except requests.RequestException as exc:
            return Probe.not_ready(f"{url}: {exc.__class__.__name__}")
        if not response.ok:
            return Probe.not_ready(f"{url}: HTTP {response.status_code}")
        if expect_text is not None and expect_text not in response.text:
            return Probe.not_ready(f"{url}: unexpected body")
        return Probe.ready(f"{url}: HTTP {response.status_code}")

    return check


def tcp_probe(host: str, port: int, *, timeout: float = 5.0) -> Callable[[], Probe]:
    """Return a check that is ready once ``host:port`` accepts connections."""

    def check() -> Probe:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return Probe.ready(f"{host}:{port} open")
        except OSError as exc:
            return Probe.not_ready(f"{host}:{port}: {exc}")

    return check
