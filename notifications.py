import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from config import OTP_EXPIRE_MINUTES

logger = logging.getLogger(__name__)

OTP_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>{heading}</h2>
  <p>Hi {name},</p>
  <p>{intro}</p>
  <div style="background-color: #f3f4f6; padding: 20px; text-align: center;
              font-size: 32px; letter-spacing: 8px; font-weight: bold;">{otp}</div>
  <p>This OTP will expire in {minutes} minutes.</p>
  <p>If you didn't request this code, please ignore this email.</p>
</div>
"""

WELCOME_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Welcome to ExPeNzO, {name}!</h2>
  <p>Your account has been verified. You can now list items on the marketplace,
     post jobs, split bills and track your budget.</p>
  <a href="{link}" style="background-color: #1f2937; color: white; padding: 12px 24px;
     text-decoration: none; border-radius: 5px; display: inline-block;">Get Started</a>
</div>
"""

RESET_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Password Reset Request</h2>
  <p>Hi {name},</p>
  <p>We received a request to reset your password. Click the button below to choose a new one:</p>
  <a href="{link}" style="background-color: #1f2937; color: white; padding: 12px 24px;
     text-decoration: none; border-radius: 5px; display: inline-block;">Reset Password</a>
  <p>This link will expire in 1 hour.</p>
  <p>If you didn't request a password reset, please ignore this email.</p>
</div>
"""

RESET_DONE_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Password Reset Successful</h2>
  <p>Hi {name},</p>
  <p>Your password has been changed. If you did not do this, contact support immediately.</p>
</div>
"""


class EmailSender:
    """Fire-and-forget SMTP mailer. ``send`` reports failure as False, it never raises."""

    def __init__(self, settings):
        self.settings = settings

    def send(self, to: str, subject: str, html: str) -> bool:
        if not self.settings.email_configured:
            logger.warning("Email not sent - configure EMAIL_USER and EMAIL_PASSWORD")
            return False

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.settings.email_from
        message["To"] = to
        message.attach(MIMEText(html, "html"))

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.settings.email_user, self.settings.email_password)
                server.sendmail(self.settings.email_user, [to], message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email error sending '{subject}' to {to}: {e}")
            return False

        logger.info(f"Email '{subject}' sent to {to}")
        return True

    def send_otp(self, to: str, name: str, otp: str, resend: bool = False) -> bool:
        if resend:
            subject = "New OTP Code - ExPeNzO Registration"
            heading = "Your New OTP Code"
            intro = "Here is your new one-time code to complete your registration:"
        else:
            subject = "Your OTP Code - ExPeNzO Registration"
            heading = "Verify Your Email"
            intro = "Thank you for registering with ExPeNzO. To complete your registration, please use the OTP code below:"
        html = OTP_TEMPLATE.format(heading=heading, name=name, intro=intro, otp=otp, minutes=OTP_EXPIRE_MINUTES)
        return self.send(to, subject, html)

    def send_welcome(self, to: str, name: str) -> bool:
        html = WELCOME_TEMPLATE.format(name=name, link=self.settings.frontend_url)
        return self.send(to, "Welcome to ExPeNzO!", html)

    def send_password_reset(self, to: str, name: str, token: str) -> bool:
        link = f"{self.settings.frontend_url}/reset-password?token={token}"
        html = RESET_TEMPLATE.format(name=name, link=link)
        return self.send(to, "Password Reset Request - ExPeNzO", html)

    def send_reset_confirmation(self, to: str, name: str) -> bool:
        html = RESET_DONE_TEMPLATE.format(name=name)
        return self.send(to, "Password Reset Successful - ExPeNzO", html)
