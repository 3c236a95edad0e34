from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

from passgate.config import Settings
from passgate.logging import get_logger

logger = get_logger(__name__)


class Mailer(Protocol):
    """Templated mail delivery; every method reports success as a bool."""

    def send_signup_otp(self, to_email: str, otp: str) -> bool: ...

    def send_login_otp(self, to_email: str, otp: str) -> bool: ...

    def send_password_reset_otp(self, to_email: str, otp: str) -> bool: ...

    def send_email_verified(self, to_email: str) -> bool: ...

    def send_password_set(self, to_email: str) -> bool: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


_HTML_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body>
    <h1>{heading}</h1>
    {paragraphs}
    <p>{app_name}</p>
</body>
</html>
"""


class EmailService:
    """Transactional mail over SMTP.

    Supports:
    - STARTTLS (``smtp_use_tls``) or implicit TLS connections
    - one-time passcode mails for signup, login and password reset
    - confirmation mails after verification and password changes
    - fallback to logging when SMTP is not configured (dev mode)
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Passgate",
        otp_ttl_minutes: int = 10,
        log_codes_when_unconfigured: bool = False,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.otp_ttl_minutes = otp_ttl_minutes
        self.log_codes_when_unconfigured = log_codes_when_unconfigured

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
            otp_ttl_minutes=settings.otp_ttl_minutes,
            log_codes_when_unconfigured=settings.test_mode,
        )

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.smtp_use_tls:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30)
        else:
            server = smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=30
            )
        try:
            if self.smtp_use_tls:
                server.starttls(context=context)
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
        except BaseException:
            server.close()
            raise
        return server

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """Send an email via SMTP.

        Returns True if sent successfully, False otherwise.
        """
        if not self.is_configured:
            # Dev mode: log the email instead of sending. Bodies may carry
            # passcodes so only the subject is logged.
            logger.info(
                "email_dev_mode",
                to=redact_email(to_email),
                subject=subject,
            )
            return True

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            logger.debug(
                "email_connecting",
                host=self.smtp_host,
                port=self.smtp_port,
                use_tls=self.smtp_use_tls,
                to=redact_email(to_email),
            )
            with self._connect() as server:
                server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info("email_sent", to=redact_email(to_email), subject=subject)
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
                error_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPConnectError as e:
            logger.error(
                "email_connect_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error=str(e),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except ssl.SSLError as e:
            logger.error(
                "email_ssl_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error=str(e),
            )
            return False
        except OSError as e:
            logger.error(
                "email_send_failed",
                to=redact_email(to_email),
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def _render(self, heading: str, paragraphs: list[str]) -> tuple[str, str]:
        html_body = _HTML_LAYOUT.format(
            heading=heading,
            paragraphs="\n    ".join(f"<p>{p}</p>" for p in paragraphs),
            app_name=self.from_name,
        )
        text_body = "\n\n".join([heading, *paragraphs, f"---\n{self.from_name}"])
        return html_body, text_body

    def _send_otp(self, to_email: str, subject: str, heading: str, intro: str, otp: str) -> bool:
        if not self.is_configured and self.log_codes_when_unconfigured:
            # Test mode without SMTP: the log is the only way to read the code
            logger.info(
                "email_dev_mode_code", to=redact_email(to_email), subject=subject, dev_code=otp
            )
        html_body, text_body = self._render(
            heading,
            [
                intro,
                f"Your code is: {otp}",
                f"This code will expire in {self.otp_ttl_minutes} minutes.",
                "If you didn't request this, you can safely ignore this email.",
            ],
        )
        return self._send_email(to_email, subject, html_body, text_body)

    def send_signup_otp(self, to_email: str, otp: str) -> bool:
        return self._send_otp(
            to_email,
            f"Verify your {self.from_name} email",
            "Verify your email",
            "Thanks for signing up! Enter the code below to verify your email address.",
            otp,
        )

    def send_login_otp(self, to_email: str, otp: str) -> bool:
        return self._send_otp(
            to_email,
            f"Your {self.from_name} login code",
            "Complete your sign in",
            "Enter the code below to finish signing in.",
            otp,
        )

    def send_password_reset_otp(self, to_email: str, otp: str) -> bool:
        return self._send_otp(
            to_email,
            f"Reset your {self.from_name} password",
            "Reset your password",
            "We received a request to reset your password. Enter the code below to continue.",
            otp,
        )

    def send_email_verified(self, to_email: str) -> bool:
        html_body, text_body = self._render(
            "Email verified",
            [
                f"Your email address {to_email} has been verified.",
                "You can now set a password for your account.",
            ],
        )
        return self._send_email(to_email, "Your email has been verified", html_body, text_body)

    def send_password_set(self, to_email: str) -> bool:
        html_body, text_body = self._render(
            "Password updated",
            [
                "The password for your account has been set.",
                "If you didn't make this change, please contact support immediately.",
            ],
        )
        return self._send_email(to_email, "Your password has been set", html_body, text_body)

    def test_connection(self) -> bool:
        """Open and close an SMTP session to check credentials and reachability."""
        if not self.is_configured:
            logger.warning("email_not_configured")
            return False
        try:
            with self._connect() as server:
                server.noop()
            return True
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(
                "email_connection_test_failed",
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False


__all__ = ["EmailService", "Mailer", "redact_email"]
