# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Outbound mail: password-reset links and 2FA login codes.

Messages go out over plain SMTP (STARTTLS when MAIL_USE_TLS is set).  With
no MAIL_HOST configured the mailer runs in log-only mode: it records that a
message *would* have been sent, without the secret it carries, and returns.
"""

import smtplib
from datetime import datetime
from email.message import EmailMessage

from core.config import Settings
from core.exceptions import UpstreamFailureError
from core.logger import logger

_RESET_HTML = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2>Password Reset Request</h2>
    <p>Hi {username},</p>
    <p>You requested to reset your password. Click the link below to reset it:</p>
    <p><a href="{url}">Reset Password</a></p>
    <p>Or copy and paste this link into your browser:</p>
    <p><a href="{url}">{url}</a></p>
    <p><strong>This link will expire in {minutes} minutes.</strong></p>
    <p>If you didn't request this, please ignore this email. Your password will remain unchanged.</p>
    <p style="font-size: 12px; color: #666;">This is an automated message, please do not reply.<br>
    &copy; {year} Account Service</p>
  </div>
</body>
</html>
"""

_RESET_TEXT = """\
Hi {username},

You requested to reset your password.

Open this link to reset it: {url}

This link will expire in {minutes} minutes.

If you didn't request this, please ignore this email.
"""

_CODE_HTML = """\
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2>Your verification code</h2>
    <p style="font-size: 28px; letter-spacing: 6px;"><strong>{code}</strong></p>
    <p>This code expires in {minutes} minutes.</p>
    <p>If you didn't try to sign in, change your password.</p>
  </div>
</body>
</html>
"""

_CODE_TEXT = """\
Your verification code is {code}

This code expires in {minutes} minutes.

If you didn't try to sign in, change your password.
"""


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self.settings.mail_host)

    def _connect(self) -> smtplib.SMTP:
        s = self.settings
        server = smtplib.SMTP(s.mail_host, s.mail_port, timeout=s.mail_timeout)
        try:
            if s.mail_use_tls:
                server.starttls()
            if s.mail_username:
                server.login(s.mail_username, s.mail_password)
        except Exception:
            server.close()
            raise
        return server

    def _send(self, to: str, subject: str, text: str, html: str) -> None:
        if not self.enabled:
            logger.info("MAIL_HOST not set; skipped mail to=%s subject=%r", to, subject)
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.settings.mail_from
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            with self._connect() as server:
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Mail delivery failed to=%s subject=%r: %s", to, subject, exc)
            raise UpstreamFailureError("Could not send email") from exc

        logger.info("Mail sent to=%s subject=%r", to, subject)

    def send_password_reset_email(self, to: str, token: str, username: str) -> None:
        url = f"{self.settings.frontend_url.rstrip('/')}/reset-password?token={token}"
        fields = {
            "username": username,
            "url": url,
            "minutes": self.settings.reset_token_expire_minutes,
            "year": datetime.now().year,
        }
        self._send(
            to,
            "Password Reset Request",
            _RESET_TEXT.format(**fields),
            _RESET_HTML.format(**fields),
        )

    def send_2fa_code(self, to: str, code: str) -> None:
        fields = {"code": code, "minutes": self.settings.two_factor_code_expire_minutes}
        self._send(
            to,
            "Your verification code",
            _CODE_TEXT.format(**fields),
            _CODE_HTML.format(**fields),
        )

    def test_connection(self) -> bool:
        """Open and close an SMTP session.  Never raises."""
        if not self.enabled:
            logger.warning("Mail service not configured (MAIL_HOST empty); running log-only")
            return False
        try:
            with self._connect() as server:
                server.noop()
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Mail service error: %s", exc)
            return False
        logger.info("Mail service is ready (%s:%d)", self.settings.mail_host, self.settings.mail_port)
        return True
