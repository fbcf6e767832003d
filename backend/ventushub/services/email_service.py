"""Email rendering and SMTP sending.

Sends emails synchronously; the email channel provider calls it through
run_in_executor so the worker loop never blocks on SMTP.
"""

import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import make_msgid
from html import escape

from ventushub.config import Settings, get_settings
from ventushub.core.errors import DeliveryError, DeliveryFatalError

logger = logging.getLogger(__name__)


# ── HTML Templates ──

_BASE_TEMPLATE = """
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="margin:0; padding:0; font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif; background:#f1f5f9; color:#0f172a;">
<div style="max-width:600px; margin:0 auto; padding:32px 24px;">
  <div style="text-align:center; margin-bottom:32px;">
    <h1 style="color:#1d4ed8; font-size:28px; margin:0;">VentusHub</h1>
    <p style="color:#64748b; font-size:12px; margin:4px 0 0;">Gestão imobiliária</p>
  </div>
  <div style="background:#ffffff; border-radius:12px; padding:24px; border:1px solid #e2e8f0;">
    {content}
  </div>
  {action_button}
  <div style="text-align:center; margin-top:32px; padding-top:24px; border-top:1px solid #e2e8f0;">
    <p style="color:#94a3b8; font-size:11px; margin:0;">
      Esta é uma notificação automática do VentusHub.<br>
      Você pode ajustar suas preferências de notificação nas configurações.
    </p>
  </div>
</div>
</body>
</html>
"""

_ACTION_BUTTON = """
<div style="text-align:center; margin-top:20px;">
  <a href="{url}" style="display:inline-block; background:#2563eb; color:white; padding:12px 28px; border-radius:8px; text-decoration:none; font-weight:600; font-size:14px;">
    {label}
  </a>
</div>
"""

SEVERITY_COLORS = {
    "low": "#64748b",
    "normal": "#2563eb",
    "high": "#f59e0b",
    "critical": "#ef4444",
}

SEVERITY_LABELS = {
    "low": "INFORMATIVO",
    "normal": "NOTIFICAÇÃO",
    "high": "IMPORTANTE",
    "critical": "URGENTE",
}


def _render_template(content_html: str, action_url: str | None = None, action_label: str = "Ver detalhes") -> str:
    """Render email content into the base template."""
    btn = ""
    if action_url:
        btn = _ACTION_BUTTON.format(url=escape(action_url, quote=True), label=action_label)
    return _BASE_TEMPLATE.format(content=content_html, action_button=btn)


def absolute_url(action_url: str | None, settings: Settings | None = None) -> str | None:
    if not action_url:
        return None
    if action_url.startswith(("http://", "https://")):
        return action_url
    settings = settings or get_settings()
    return settings.public_base_url.rstrip("/") + "/" + action_url.lstrip("/")


# ── Template builders ──

def template_notification(notification) -> tuple[str, str]:
    """Returns (subject, html_body) for a single notification."""
    color = SEVERITY_COLORS.get(notification.severity, SEVERITY_COLORS["normal"])
    label = SEVERITY_LABELS.get(notification.severity, SEVERITY_LABELS["normal"])
    content = f"""
    <div style="text-align:center; margin-bottom:16px;">
      <span style="background:{color}20; color:{color}; padding:4px 12px; border-radius:6px; font-size:13px; font-weight:600;">
        {label}
      </span>
    </div>
    <h2 style="text-align:center; margin:12px 0 4px; font-size:20px; color:#0f172a;">{escape(notification.title)}</h2>
    <p style="color:#334155; font-size:14px; line-height:1.6; margin:12px 0;">{escape(notification.message)}</p>
    """
    subject = f"[VentusHub] {notification.title}"
    return subject, _render_template(content, action_url=absolute_url(notification.action_url))


def template_digest(notifications: list) -> tuple[str, str]:
    """Returns (subject, html_body) batching several notifications into one email."""
    rows = "".join(
        f"""
      <tr>
        <td style="padding:10px 0; border-bottom:1px solid #e2e8f0;">
          <p style="margin:0; color:#0f172a; font-weight:600; font-size:14px;">{escape(n.title)}</p>
          <p style="margin:4px 0 0; color:#475569; font-size:13px;">{escape(n.message)}</p>
        </td>
        <td style="padding:10px 0; border-bottom:1px solid #e2e8f0; text-align:right; color:#94a3b8; font-size:12px; white-space:nowrap;">
          {n.created_at.strftime("%d/%m %H:%M")}
        </td>
      </tr>"""
        for n in notifications
    )
    content = f"""
    <div style="text-align:center; margin-bottom:16px;">
      <span style="background:#2563eb20; color:#2563eb; padding:4px 12px; border-radius:6px; font-size:13px; font-weight:600;">
        RESUMO
      </span>
    </div>
    <p style="color:#334155; font-size:14px; text-align:center; margin:12px 0;">
      Você tem <strong>{len(notifications)}</strong> nova(s) notificação(ões).
    </p>
    <table style="width:100%; margin-top:16px; border-collapse:collapse;">{rows}
    </table>
    """
    subject = f"[VentusHub] Resumo: {len(notifications)} notificação(ões)"
    return subject, _render_template(content, action_url=absolute_url("/notifications"), action_label="Abrir central")


# ── Sending ──

def send_email(to_address: str, subject: str, html_body: str, settings: Settings | None = None) -> str:
    """Send an email via SMTP and return its Message-ID.

    This is synchronous; call it via run_in_executor from async code.
    Raises DeliveryFatalError for rejected recipients and DeliveryError for
    anything the next attempt may get through.
    """
    settings = settings or get_settings()

    if not settings.smtp_host:
        raise DeliveryFatalError("SMTP not configured", channel="email", provider="smtp")

    message_id = make_msgid(domain=settings.smtp_from.split("@")[-1])
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from
    msg["To"] = to_address
    msg["Message-ID"] = message_id
    msg.attach(MIMEText(html_body, "html"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.delivery_timeout_seconds) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)
    except smtplib.SMTPRecipientsRefused as e:
        raise DeliveryFatalError(f"Recipient refused: {to_address}", channel="email", provider="smtp") from e
    except (smtplib.SMTPException, OSError) as e:
        raise DeliveryError(f"SMTP error: {e}", channel="email", provider="smtp") from e

    logger.info("Email sent to %s: %s", to_address, subject)
    return message_id
