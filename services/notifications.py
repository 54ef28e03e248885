"""Best-effort user notifications; failures never fail the originating write."""
import logging

import requests
from flask import current_app

from models import db, User
from services import events
from utils.email_templates import (
    get_sanction_applied_email,
    get_sanction_lifted_email,
    get_appeal_reviewed_email,
    get_report_resolved_email,
)

logger = logging.getLogger(__name__)

RESEND_API_BASE = "https://api.resend.com"

NOTIFIED_KINDS = {
    events.SANCTION_APPLIED,
    events.SANCTION_LIFTED,
    events.APPEAL_REVIEWED,
    events.REPORT_RESOLVED,
}


def send_email(to: str, subject: str, html: str) -> bool:
    """Queue one email through the Resend API"""
    config = current_app.config
    api_key = config.get('RESEND_API_KEY')
    if not api_key:
        logger.warning("RESEND_API_KEY not set; skipping email to %s", to)
        return False

    try:
        resp = requests.post(
            f"{RESEND_API_BASE}/emails",
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "from": config['RESEND_FROM_EMAIL'],
                "to": to,
                "subject": subject,
                "html": html,
            },
            timeout=config['EMAIL_TIMEOUT'],
        )
    except requests.RequestException as e:
        logger.error("Resend request failed for %s: %s", to, e)
        return False

    if resp.status_code not in (200, 201):
        logger.error("Resend email failed (%s): %s", resp.status_code, resp.text)
        return False
    logger.info("Email '%s' queued for %s", subject, to)
    return True


def _render(kind, payload):
    if kind == events.SANCTION_APPLIED:
        duration = 'n/a' if payload.get('kind') == 'warn' else (payload.get('duration') or 'permanent')
        return "Important: action on your account", get_sanction_applied_email(
            payload.get('kind'), payload.get('reason'), duration, payload.get('expires_at'),
        )
    if kind == events.SANCTION_LIFTED:
        return "Your account restriction was lifted", get_sanction_lifted_email(payload.get('kind'))
    if kind == events.APPEAL_REVIEWED:
        return "Your appeal has been reviewed", get_appeal_reviewed_email(payload.get('status'))
    if kind == events.REPORT_RESOLVED:
        return "Update on your report", get_report_resolved_email(payload.get('status'))
    return None


def notify(user_id, kind, payload) -> bool:
    """Send `kind` to `user_id`; returns whether anything was sent"""
    try:
        rendered = _render(kind, payload)
        if rendered is None:
            return False
        user = db.session.get(User, user_id)
        if user is None or not user.email:
            logger.debug(f"No email on file for {user_id}; skipping {kind}")
            return False
        subject, html = rendered
        return send_email(user.email, subject, html)
    except Exception as e:
        logger.error(f"Notification {kind} for {user_id} failed: {str(e)}")
        return False


def email_subscriber(evt):
    if evt.kind not in NOTIFIED_KINDS:
        return
    for recipient in evt.recipients:
        notify(recipient, evt.kind, evt.payload)
