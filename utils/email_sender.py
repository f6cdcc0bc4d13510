import os
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from html import escape
from typing import Optional


SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", SMTP_USER)


def smtp_configured() -> bool:
    return bool(SMTP_USER and SMTP_PASSWORD)


def render_html(title: str, body: str) -> str:
    paragraphs = "".join(f"<p>{escape(line)}</p>" for line in body.splitlines() if line.strip())
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; color: #222;">
        <h2>{escape(title)}</h2>
        {paragraphs}
        <p style="color: #888; font-size: 12px;">FixFly</p>
      </body>
    </html>
    """


def send_email(receiver_email: str, subject: str, text: str, html: Optional[str] = None) -> None:
    if not smtp_configured():
        raise RuntimeError("SMTP_USER / SMTP_PASSWORD are not configured")

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = SMTP_FROM
    message["To"] = receiver_email

    message.attach(MIMEText(text, "plain"))
    message.attach(MIMEText(html or render_html(subject, text), "html"))

    with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
        server.starttls()
        server.login(SMTP_USER, SMTP_PASSWORD)
        server.sendmail(SMTP_FROM, receiver_email, message.as_string())
