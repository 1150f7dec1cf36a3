from __future__ import annotations

import smtplib
from email.message import EmailMessage

from kiosk.integrations.email.base import EmailProvider
from kiosk.integrations.messaging.base import MessageResult


class SmtpEmailProvider(EmailProvider):
    name = "smtp"

    def __init__(self, *, host: str, port: int, username: str, password: str, sender: str, reply_to: str = ""):
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.sender = sender
        self.reply_to = reply_to

    def send_email(self, *, to: str, subject: str, body: str) -> MessageResult:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            return MessageResult(ok=False, code="EMAIL_SEND_FAILED", message=str(e)[:200])
        return MessageResult(ok=True, code="OK", message="sent")
