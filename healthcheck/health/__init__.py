"""Health subsystem — probe engine, state machine, runners, supervisor."""

from .engine import CertificateCheck, Health, HttpCheck, Outcome, TcpPingCheck, run_check
from .state import EventKind, HealthState, NotificationEvent, apply, decide, record_notification
