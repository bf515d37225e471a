"""Probe engine — the checks a service can be configured with.

Supports: HTTP(S) status, TCP connect, TLS certificate expiry.
Every check makes exactly one attempt per ``execute()`` call, never raises,
and is bounded by its own timeout. Failures come back as ``Outcome`` values.
"""

from __future__ import annotations

import logging
import socket
import ssl
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Union

import httpx

logger = logging.getLogger(__name__)


# ── Outcome ──────────────────────────────────────────────────────────────────


class Health(str, Enum):
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class Outcome:
    """Result of a single probe execution."""

    health: Health
    message: str = ""

    @classmethod
    def success(cls) -> Outcome:
        return cls(Health.SUCCESS)

    @classmethod
    def failure(cls, message: str) -> Outcome:
        return cls(Health.FAILURE, message)

    @property
    def ok(self) -> bool:
        return self.health is Health.SUCCESS


# ── Checks ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HttpCheck:
    """``Success`` iff the URL answers with the expected status code."""

    kind: ClassVar[str] = "http"

    url: str
    expected_status: int = 200
    timeout_ms: int = 10_000

    @property
    def deadline(self) -> float:
        return self.timeout_ms / 1000

    @property
    def target(self) -> str:
        return self.url

    def execute(self) -> Outcome:
        try:
            with httpx.Client(timeout=self.deadline, follow_redirects=True) as client:
                # status line and headers only; the body is never read
                with client.stream("GET", self.url) as resp:
                    status_code = resp.status_code
        except httpx.TimeoutException:
            return Outcome.failure(f"Request failed: timed out after {self.timeout_ms}ms")
        except httpx.HTTPError as e:
            return Outcome.failure(f"Request failed: {e}")
        except Exception as e:
            return Outcome.failure(f"Request failed: {type(e).__name__}: {e}")

        if status_code == self.expected_status:
            return Outcome.success()
        return Outcome.failure(f"Unexpected status: {status_code}")


@dataclass(frozen=True)
class TcpPingCheck:
    """``Success`` iff a TCP connection opens within ``timeout_ms``."""

    kind: ClassVar[str] = "tcpPing"

    host: str
    port: int
    timeout_ms: int = 1_000

    @property
    def deadline(self) -> float:
        return self.timeout_ms / 1000

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"

    def execute(self) -> Outcome:
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.deadline)
            sock.close()
        except TimeoutError:
            return Outcome.failure(f"Timeout after {self.timeout_ms}ms")
        except OSError as e:
            return Outcome.failure(f"Connection failed: {e}")
        return Outcome.success()


@dataclass(frozen=True)
class CertificateCheck:
    """``Success`` iff the peer certificate is valid for at least N more days."""

    kind: ClassVar[str] = "certificate"

    host: str
    port: int = 443
    days_before_expiry: int = 30
    timeout_ms: int = 10_000

    @property
    def deadline(self) -> float:
        # connect + handshake each get the socket timeout
        return 2 * self.timeout_ms / 1000

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"

    def execute(self) -> Outcome:
        try:
            not_after = self._fetch_not_after()
        except Exception as e:
            return Outcome.failure(f"TLS error: {type(e).__name__}: {e}")
        if not not_after:
            return Outcome.failure("No peer certificate found")
        try:
            expiry = datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)
        except ValueError as e:
            return Outcome.failure(f"Failed to parse certificate: {e}")
        return self.evaluate_expiry(expiry, datetime.now(timezone.utc))

    def evaluate_expiry(self, expiry: datetime, now: datetime) -> Outcome:
        days_left = (expiry - now).days
        if days_left < 0:
            return Outcome.failure(f"Certificate expired {-days_left} days ago")
        if days_left < self.days_before_expiry:
            return Outcome.failure(
                f"Certificate expires in {days_left} days "
                f"(threshold: {self.days_before_expiry} days)"
            )
        return Outcome.success()

    def _fetch_not_after(self) -> str:
        ctx = ssl.create_default_context()
        timeout = self.timeout_ms / 1000
        with socket.create_connection((self.host, self.port), timeout=timeout) as sock:
            with ctx.wrap_socket(sock, server_hostname=self.host) as ssock:
                cert = ssock.getpeercert()
        return (cert or {}).get("notAfter", "")


Check = Union[HttpCheck, TcpPingCheck, CertificateCheck]

CHECK_TYPES: dict[str, type[Check]] = {
    HttpCheck.kind: HttpCheck,
    TcpPingCheck.kind: TcpPingCheck,
    CertificateCheck.kind: CertificateCheck,
}


def run_check(check: Check) -> Outcome:
    """Execute a check and log how it went."""
    logger.debug("Starting %s check for %s", check.kind, check.target)
    t0 = time.perf_counter()
    outcome = check.execute()
    logger.debug(
        "%s check for %s completed: %s %s (%.1fms)",
        check.kind, check.target, outcome.health.value, outcome.message,
        (time.perf_counter() - t0) * 1000,
    )
    return outcome
