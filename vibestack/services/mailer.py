import datetime as dt
import html
import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from urllib.parse import quote

from vibestack.core.config import Settings, get_settings
from vibestack.data import subscribers

log = logging.getLogger("mailer")

OUTBOX_DIR = Path("data/mail_outbox")


@dataclass
class OutboundMessage:
    to: str
    subject: str
    html: str
    text: str


def unsubscribe_url(cfg: Settings, token: str) -> str:
    return f"{cfg.PUBLIC_BASE_URL}/api/unsubscribe?token={quote(token)}"


def build_post_messages(cfg: Settings, handle: str, title: str, content: str, rows: list[dict]) -> list[OutboundMessage]:
    safe_title = html.escape(title)
    body_html = html.escape(content).replace("\n", "<br/>")
    out = []
    for row in rows:
        link = unsubscribe_url(cfg, row["unsubscribe_token"])
        out.append(
            OutboundMessage(
                to=row["email"],
                subject=f"{title} - A new post from {handle}",
                html=(
                    '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
                    f"<h1>{safe_title}</h1>"
                    f'<div style="font-size: 16px; line-height: 1.6;">{body_html}</div>'
                    '<hr style="margin: 30px 0;" />'
                    f'<p style="text-align: center; font-size: 10px;"><a href="{html.escape(link)}">Unsubscribe</a></p>'
                    "</div>"
                ),
                text=f"{title}\n\n{content}\n\nUnsubscribe: {link}\n",
            )
        )
    return out


def _write_outbox_eml(msg: EmailMessage) -> str | None:
    """Write a .eml file to data/mail_outbox as a fallback for local inspection."""
    try:
        OUTBOX_DIR.mkdir(parents=True, exist_ok=True)
        stamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        fpath = OUTBOX_DIR / f"mail_{stamp}_{uuid.uuid4().hex[:8]}.eml"
        fpath.write_bytes(bytes(msg))
        return str(fpath)
    except Exception:
        log.exception("mail_outbox_write_failed to=%s", msg["To"])
        return None


def _to_email(m: OutboundMessage, from_addr: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = m.subject
    msg["From"] = from_addr
    msg["To"] = m.to
    msg.set_content(m.text)
    msg.add_alternative(m.html, subtype="html")
    return msg


def send_batch(cfg: Settings, batch: list[OutboundMessage]) -> int:
    """Deliver over one SMTP connection; returns how many were accepted."""
    if not batch:
        return 0
    host = (cfg.SMTP_HOST or "").strip()
    port = cfg.SMTP_PORT or 0
    user = (cfg.SMTP_USER or "").strip()
    pwd = cfg.SMTP_PASSWORD or None
    from_addr = (cfg.SMTP_FROM or user or "VibeStack <no-reply@localhost>").strip()

    if not (host and port):
        for m in batch:
            _write_outbox_eml(_to_email(m, from_addr))
        log.warning("mail_not_configured outboxed=%d", len(batch))
        return 0

    sent = 0
    server = smtplib.SMTP_SSL(host, port, timeout=10) if port == 465 else smtplib.SMTP(host, port, timeout=10)
    try:
        server.ehlo()
        if port != 465:
            try:
                server.starttls()
            except smtplib.SMTPNotSupportedError:
                log.warning("smtp_starttls_unsupported host=%s", host)
        if user and pwd:
            server.login(user, pwd)
        for m in batch:
            try:
                server.send_message(_to_email(m, from_addr))
                sent += 1
            except smtplib.SMTPException:
                log.exception("mail_send_failed to=%s", m.to)
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            pass
    log.info("mail_batch_sent sent=%d total=%d", sent, len(batch))
    return sent


def notify_subscribers_of_post(author_id: str, handle: str, title: str, content: str) -> int:
    """Background task after a publish; never raises into the request."""
    cfg = get_settings()
    try:
        rows = subscribers.list_mailable(author_id)
        return send_batch(cfg, build_post_messages(cfg, handle, title, content, rows))
    except Exception:
        log.exception("publish_notify_failed author=%s", author_id)
        return 0
