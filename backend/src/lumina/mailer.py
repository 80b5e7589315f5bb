"""Outbound mail.

Messages are written to the log; deployments that deliver real mail
subclass ``Mailer`` and override ``send``.
"""

import logging

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, base_url: str = "http://localhost:8000"):
        self.base_url = base_url.rstrip("/")

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Mail to %s: %s\n%s", to, subject, body)

    def send_invitation(self, to: str, organization: str, token: str) -> None:
        self.send(
            to,
            f"You have been invited to join {organization}",
            f"Accept the invitation: {self.base_url}/api/invitations/{token}/accept",
        )

    def send_password_reset(self, to: str, token: str) -> None:
        self.send(to, "Reset your password", f"Your password reset token: {token}")
