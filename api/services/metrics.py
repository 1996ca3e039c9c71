from __future__ import annotations

from prometheus_client import Counter


CONTRACTS_UPLOADED_COUNTER = Counter(
    "ca_contracts_uploaded_total",
    "Contracts accepted for analysis",
)

ANALYSIS_COUNTER = Counter(
    "ca_analysis_total",
    "Extractor runs by trigger and outcome",
    ["trigger", "outcome"],
)

NOTIFICATIONS_COUNTER = Counter(
    "ca_notifications_total",
    "Notification delivery attempts by outcome",
    ["outcome"],
)


def record_contract_uploaded() -> None:
    CONTRACTS_UPLOADED_COUNTER.inc()


def record_analysis(trigger: str, outcome: str) -> None:
    ANALYSIS_COUNTER.labels(trigger=trigger, outcome=outcome).inc()


def record_notification(outcome: str) -> None:
    NOTIFICATIONS_COUNTER.labels(outcome=outcome).inc()
