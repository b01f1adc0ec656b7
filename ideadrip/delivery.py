"""
Delivery collaborator.

The dispatcher only sees DeliveryService.deliver(subscriber, batch) -> bool.
EmailDelivery is the production implementation: a plain digest body sent
through an EmailProvider (SMTP today).
"""

from __future__ import annotations

import hashlib
import hmac
import html
import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from .config import DispatchSettings
from .models import GeneratedBatch, Subscriber

logger = logging.getLogger(__name__)

DIGEST_SUBJECT = "Your Weekly Creator Intelligence 📊"


class DeliveryService(ABC):
    @abstractmethod
    def deliver(self, subscriber: Subscriber, batch: GeneratedBatch) -> bool:
        """True if the content went out. No partial states."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Unsubscribe links
# ---------------------------------------------------------------------------

def make_unsubscribe_token(user_id: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), str(user_id).encode("utf-8"), hashlib.sha256).hexdigest()


def verify_unsubscribe_token(user_id: str, token: str, secret: str) -> bool:
    return hmac.compare_digest(make_unsubscribe_token(user_id, secret), token or "")


def unsubscribe_url(user_id: str, *, app_url: str, secret: str) -> str:
    query = urlencode({"uid": user_id, "token": make_unsubscribe_token(user_id, secret)})
    return f"{app_url.rstrip('/')}/api/unsubscribe?{query}"


# ---------------------------------------------------------------------------
# Body
# ---------------------------------------------------------------------------

def render_digest(subscriber: Subscriber, batch: GeneratedBatch, unsub_url: str) -> Tuple[str, str]:
    """(text body, html body). Intentionally plain; the real template lives in the web app."""
    text_lines = [f"Hi {subscriber.display_name},", "", f"Here are your {batch.count} video ideas for this week:", ""]
    html_items = []
    for n, idea in enumerate(batch.items, start=1):
        title = str(idea.get("title") or "").strip()
        hook = str(idea.get("hook") or "").strip()
        text_lines.append(f"{n}. {title}")
        if hook:
            text_lines.append(f"   {hook}")
        html_items.append(
            f"<li><strong>{html.escape(title)}</strong>"
            + (f"<br>{html.escape(hook)}" if hook else "")
            + "</li>"
        )
    text_lines += ["", f"Unsubscribe: {unsub_url}"]

    body_html = (
        f"<p>Hi {html.escape(subscriber.display_name)},</p>"
        f"<p>Here are your {batch.count} video ideas for this week:</p>"
        f"<ol>{''.join(html_items)}</ol>"
        f'<p style="font-size:12px"><a href="{html.escape(unsub_url)}">Unsubscribe</a></p>'
    )
    return "\n".join(text_lines), body_html


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class EmailProvider(ABC):
    """Transport for one rendered digest. Raise on failure; EmailDelivery decides what that means."""

    @abstractmethod
    def send_email(
        self,
        *,
        from_addr: str,
        to_addr: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError


def build_message(
    from_addr: str,
    to_addr: str,
    subject: str,
    html_body: str,
    text_body: Optional[str],
    headers: Optional[Dict[str, Any]] = None,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["From"] = from_addr
    msg["To"] = to_addr
    msg["Subject"] = subject
    for key, value in (headers or {}).items():
        if key not in msg:
            msg[key] = str(value)

    msg.attach(MIMEText(text_body or "Open this email in an HTML-capable client to see your ideas.", "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    return msg


class SMTPEmailProvider(EmailProvider):
    """Plain SMTP (STARTTLS + login). Takes credentials from the caller, never from env."""

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: Optional[float] = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send_email(
        self,
        *,
        from_addr: str,
        to_addr: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        headers = (metadata or {}).get("headers")
        msg = build_message(
            from_addr,
            to_addr,
            subject,
            html_body,
            text_body,
            headers if isinstance(headers, dict) else None,
        )

        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                # Gmail app passwords are shown with spaces.
                smtp.login(self.username, (self.password or "").replace(" ", ""))
            refused = smtp.sendmail(from_addr, [to_addr], msg.as_string())
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:
                pass
        if refused:
            raise smtplib.SMTPRecipientsRefused(refused)


class EmailDelivery(DeliveryService):
    def __init__(self, settings: DispatchSettings, provider: Optional[EmailProvider] = None) -> None:
        self.settings = settings
        self.provider = provider or SMTPEmailProvider(
            settings.smtp_host,
            settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_pass,
            use_tls=settings.smtp_use_tls,
        )

    def deliver(self, subscriber: Subscriber, batch: GeneratedBatch) -> bool:
        if not subscriber.email or batch.count == 0:
            logger.warning("Nothing to deliver for user %s (email=%r, ideas=%s)", subscriber.user_id, subscriber.email, batch.count)
            return False

        unsub = unsubscribe_url(
            subscriber.user_id,
            app_url=self.settings.app_url,
            secret=self.settings.unsubscribe_secret,
        )
        text_body, html_body = render_digest(subscriber, batch, unsub)

        if self.settings.dry_run:
            logger.info("[dry-run] would email %s with %s ideas", subscriber.email, batch.count)
            return True

        try:
            self.provider.send_email(
                from_addr=self.settings.smtp_from,
                to_addr=subscriber.email,
                subject=DIGEST_SUBJECT,
                html_body=html_body,
                text_body=text_body,
                metadata={"headers": {"List-Unsubscribe": f"<{unsub}>"}},
            )
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP send to %s failed: %s", subscriber.email, exc)
            return False
        return True
