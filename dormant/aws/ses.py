"""Email notifications through Amazon SES."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from dormant.aws.errors import upstream_errors

if TYPE_CHECKING:
    from mypy_boto3_ses import SESClient

log = logger.bind(component="ses")


class SesNotifier:
    """Notifier sending plain-text email from a verified sender."""

    def __init__(self, ses: SESClient, sender: str, recipient: str) -> None:
        self._ses = ses
        self.sender = sender
        self.recipient = recipient

    def notify(self, subject: str, body: str) -> None:
        with upstream_errors(f"send notification to {self.recipient}"):
            self._ses.send_email(
                Source=self.sender,
                Destination={"ToAddresses": [self.recipient]},
                Message={
                    "Subject": {"Data": subject},
                    "Body": {"Text": {"Data": body}},
                },
            )
        log.debug("Sent notification {subject!r} to {to}", subject=subject, to=self.recipient)
