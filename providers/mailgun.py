"""Mailgun HTTP API notifier."""
from __future__ import annotations

import logging
from typing import Optional

import requests

from backup.config import MailgunConfig
from backup.errors import NotificationFailure

LOGGER = logging.getLogger("zfsbackup.notify")


class MailgunNotifier:
    def __init__(self, config: MailgunConfig, *, session: Optional[requests.Session] = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self._config.base_url.rstrip('/')}/{self._config.domain}/messages"

    def _subject(self, subject: str) -> str:
        prefix = self._config.subject_prefix.strip()
        return f"{prefix} {subject}" if prefix else subject

    def send(self, subject: str, body: str, category: str) -> None:
        if not self._config.complete:
            raise NotificationFailure("mailgun settings incomplete")
        full_subject = self._subject(subject)
        LOGGER.info("Sending %s notification: %s", category, full_subject)
        try:
            response = self._session.post(
                self.url,
                auth=("api", str(self._config.api_key)),
                data={
                    "from": self._config.sender,
                    "to": self._config.recipient,
                    "subject": full_subject,
                    "text": body,
                },
                timeout=self._config.timeout_s,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NotificationFailure(f"mailgun request failed: {exc}") from exc
        LOGGER.info("Mailgun notification accepted (%s)", response.status_code)


__all__ = ["MailgunNotifier"]
