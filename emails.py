"""
Transactional email for Basha Lagbe.

Every sender returns ``True`` when the message was handed to the SMTP server and
``False`` otherwise. Failures are logged and never raised: email is a side
effect and must not block the request that triggered it.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from jinja2 import Environment, select_autoescape

import config

logger = logging.getLogger(__name__)

env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background-color: #f0f9ff; padding: 20px; border-radius: 10px;">
    <h2 style="color: #3b82f6;">{{ heading }}</h2>
    {% block body %}{% endblock %}
  </div>
  <p style="font-size: 12px; color: #94a3b8; margin-top: 20px; text-align: center;">Basha Lagbe</p>
</div>
"""

VERIFICATION_HTML = env.from_string(_LAYOUT.replace("{% block body %}{% endblock %}", """
    <p style="font-size: 16px;">Your verification code is:</p>
    <div style="background-color: #dbeafe; padding: 10px; border-radius: 5px; text-align: center;
                font-size: 24px; font-weight: bold; letter-spacing: 5px; margin: 20px 0;">{{ code }}</div>
    <p style="font-size: 14px; color: #64748b;">This code will expire in {{ minutes }} minutes.</p>
    <p style="font-size: 12px; color: #94a3b8;">If you didn't request this code, please ignore this email.</p>
"""))

PASSWORD_RESET_HTML = env.from_string(_LAYOUT.replace("{% block body %}{% endblock %}", """
    <p>Hello {{ name }},</p>
    <p>We received a request to reset the password of your Basha Lagbe account.</p>
    <p style="text-align: center; margin: 30px 0;">
      <a href="{{ reset_url }}" style="background: #4f46e5; color: white; padding: 14px 28px;
         text-decoration: none; border-radius: 10px;">Reset My Password</a>
    </p>
    <p style="font-size: 14px; color: #92400e;">This link expires in 1 hour. If you didn't request it, ignore this email.</p>
"""))

PASSWORD_CHANGED_HTML = env.from_string(_LAYOUT.replace("{% block body %}{% endblock %}", """
    <p>Hello {{ name }},</p>
    <p>The password of your Basha Lagbe account was changed. If this wasn't you, reset it immediately.</p>
"""))

MODERATION_HTML = env.from_string(_LAYOUT.replace("{% block body %}{% endblock %}", """
    {% if approved %}
    <p>Your property <strong>{{ title }}</strong> has been approved and is now live.</p>
    {% else %}
    <p>Your property <strong>{{ title }}</strong> was not approved.</p>
    <p>Reason: {{ reason or "Not specified" }}</p>
    <p>You can update the listing and it will be reviewed again.</p>
    {% endif %}
"""))

INQUIRY_HTML = env.from_string(_LAYOUT.replace("{% block body %}{% endblock %}", """
    <p>{{ sender }} wrote about <strong>{{ title }}</strong>:</p>
    <blockquote style="border-left: 3px solid #3b82f6; padding-left: 10px;">{{ message }}</blockquote>
"""))

VERIFICATION_SUBJECTS = {
    "signup": "Verify Your Basha Lagbe Account",
    "signin": "Sign In Verification Code",
    "admin-signin": "Admin Sign In Verification Code",
    "password-reset": "Password Reset Verification Code",
}


def send_email(to: str, subject: str, html: str, text: Optional[str] = None) -> bool:
    if not config.SMTP_HOST:
        logger.info("SMTP not configured, email to %s not sent: %s", to, subject)
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config.MAIL_FROM
    msg["To"] = to
    msg.set_content(text or subject)
    msg.add_alternative(html, subtype="html")

    try:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=10) as smtp:
            smtp.starttls()
            if config.SMTP_USER:
                smtp.login(config.SMTP_USER, config.SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send email to %s: %s", to, e)
        return False

    logger.info("Email sent to %s: %s", to, subject)
    return True


def send_verification_email(email: str, code: str, type_: str = "signup", minutes: int = 10) -> bool:
    subject = VERIFICATION_SUBJECTS.get(type_, "Verification Code")
    html = VERIFICATION_HTML.render(heading=subject, code=code, minutes=minutes)
    return send_email(email, subject, html, f"Your verification code is: {code}")


def send_password_reset_email(email: str, reset_url: str, name: str = "") -> bool:
    html = PASSWORD_RESET_HTML.render(heading="Password Reset", name=name or email, reset_url=reset_url)
    return send_email(email, "Reset Your Basha Lagbe Password", html, f"Reset your password: {reset_url}")


def send_password_changed_email(email: str, name: str = "") -> bool:
    html = PASSWORD_CHANGED_HTML.render(heading="Password Changed", name=name or email)
    return send_email(email, "Your Basha Lagbe Password Was Changed", html)


def send_moderation_email(email: str, title: str, approved: bool, reason: Optional[str] = None) -> bool:
    heading = "Property Approved" if approved else "Property Rejected"
    html = MODERATION_HTML.render(heading=heading, title=title, approved=approved, reason=reason)
    return send_email(email, f"{heading}: {title}", html)


def send_inquiry_email(email: str, sender: str, title: str, message: str, reply: bool = False) -> bool:
    heading = "New Reply to Your Inquiry" if reply else "New Property Inquiry"
    html = INQUIRY_HTML.render(heading=heading, sender=sender, title=title, message=message)
    return send_email(email, heading, html, message)
