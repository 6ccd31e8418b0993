"""Typed payloads carried by ``certificate_generation`` jobs.

The wire format stored in ``job_queue.job_data`` is::

    {
        "eventId": "<event id>" | "standalone",
        "userId": "...",
        "participantName": "...",
        "eventTitle": "...",
        "completionDate": "YYYY-MM-DD",
        "config": {...}            # optional inline certificate configuration
    }

``parse_certificate_job`` turns it into one of two variants so callers branch
on the type instead of comparing ``eventId`` against the sentinel.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

STANDALONE_EVENT_ID = "standalone"

_REQUIRED_FIELDS = ("userId", "participantName", "eventTitle", "completionDate")


class InvalidJobPayload(ValueError):
    pass


@dataclass(frozen=True)
class EventCertificateJob:
    event_id: str
    user_id: str
    participant_name: str
    event_title: str
    completion_date: str
    config: Optional[dict] = None

    def to_job_data(self) -> dict:
        data = {
            "eventId": self.event_id,
            "userId": self.user_id,
            "participantName": self.participant_name,
            "eventTitle": self.event_title,
            "completionDate": self.completion_date,
        }
        if self.config is not None:
            data["config"] = self.config
        return data


@dataclass(frozen=True)
class StandaloneCertificateJob:
    user_id: str
    participant_name: str
    event_title: str
    completion_date: str
    config: Optional[dict] = None

    @property
    def event_id(self) -> str:
        return STANDALONE_EVENT_ID

    def to_job_data(self) -> dict:
        data = {
            "eventId": STANDALONE_EVENT_ID,
            "userId": self.user_id,
            "participantName": self.participant_name,
            "eventTitle": self.event_title,
            "completionDate": self.completion_date,
        }
        if self.config is not None:
            data["config"] = self.config
        return data


CertificateJob = Union[EventCertificateJob, StandaloneCertificateJob]


def _text(job_data: dict, key: str) -> str:
    value = job_data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidJobPayload(f"missing {key}")
    return value.strip()


def parse_certificate_job(job_data) -> CertificateJob:
    if not isinstance(job_data, dict):
        raise InvalidJobPayload("job data must be an object")
    event_id = _text(job_data, "eventId")
    fields = {key: _text(job_data, key) for key in _REQUIRED_FIELDS}
    config = job_data.get("config")
    if config is not None and not isinstance(config, dict):
        raise InvalidJobPayload("config must be an object")
    common = dict(
        user_id=fields["userId"],
        participant_name=fields["participantName"],
        event_title=fields["eventTitle"],
        completion_date=fields["completionDate"],
        config=config,
    )
    if event_id == STANDALONE_EVENT_ID:
        return StandaloneCertificateJob(**common)
    return EventCertificateJob(event_id=event_id, **common)
