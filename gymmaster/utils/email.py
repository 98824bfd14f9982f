"""
Email Utility for GymMaster
Handles sending various email notifications
"""
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from gymmaster.config import (
    EMAIL_ENABLED,
    SMTP_HOST,
    SMTP_PORT,
    SMTP_USER,
    SMTP_PASSWORD,
    SMTP_FROM_EMAIL,
    SMTP_FROM_NAME,
    OTP_EXPIRY_MINUTES,
)

logger = logging.getLogger(__name__)

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f9f9f9; border-radius: 10px; }
    .header { background: #1f2937; color: white; padding: 20px; text-align: center; border-radius: 10px 10px 0 0; }
    .content { background-color: white; padding: 30px; border-radius: 0 0 10px 10px; }
    .otp-code { font-size: 32px; font-weight: bold; color: #1f2937; text-align: center; letter-spacing: 5px; padding: 20px; background-color: #f0f0f0; border-radius: 5px; margin: 20px 0; }
    .footer { text-align: center; margin-top: 20px; font-size: 12px; color: #666; }
"""


def _render(title: str, content: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_STYLE}</style></head>
    <body>
        <div class="container">
            <div class="header"><h1>{title}</h1></div>
            <div class="content">
                {content}
                <div class="footer"><p>&copy; GymMaster. All rights reserved.</p></div>
            </div>
        </div>
    </body>
    </html>
    """


def send_email(to_email: str, subject: str, body: str) -> bool:
    """
    Send email using SMTP server (supports TLS and SSL)

    Args:
        to_email: Recipient email address
        subject: Email subject
        body: Email body (HTML supported)

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    if not EMAIL_ENABLED:
        logger.info(f"Email disabled, not sending '{subject}' to {to_email}")
        return True

    try:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{SMTP_FROM_NAME} <{SMTP_FROM_EMAIL}>"
        message["To"] = to_email
        message.attach(MIMEText(body, "html"))

        # Port 465 is implicit SSL, anything else goes through STARTTLS
        if SMTP_PORT == 465:
            with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
                server.login(SMTP_USER, SMTP_PASSWORD)
                server.send_message(message)
        else:
            with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
                server.starttls()
                server.login(SMTP_USER, SMTP_PASSWORD)
                server.send_message(message)

        logger.info(f"Email sent successfully to {to_email}")
        return True

    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP Authentication failed: {str(e)}")
        return False
    except smtplib.SMTPException as e:
        logger.error(f"SMTP Error: {str(e)}")
        return False
    except Exception as e:
        logger.error(f"Failed to send email: {type(e).__name__}: {str(e)}")
        return False


def send_password_reset_otp_email(to_email: str, otp_code: str, username: str) -> bool:
    """
    Send OTP email for password reset

    Args:
        to_email: Recipient email address
        otp_code: OTP code to send
        username: Name of the user

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    content = f"""
        <p>Hello <strong>{username}</strong>,</p>
        <p>You asked to reset the password of your GymMaster account. Use this code:</p>
        <div class="otp-code">{otp_code}</div>
        <p><strong>The code is valid for {OTP_EXPIRY_MINUTES} minutes.</strong></p>
        <p>If you did not request a password reset, ignore this email.</p>
    """
    return send_email(to_email, "Password reset code | GymMaster", _render("Reset Password", content))


def send_login_otp_email(to_email: str, otp_code: str, username: str) -> bool:
    """Second login step for accounts with two-factor authentication"""
    content = f"""
        <p>Hello <strong>{username}</strong>,</p>
        <p>Someone signed in to your GymMaster account with your password. Enter this code to finish logging in:</p>
        <div class="otp-code">{otp_code}</div>
        <p><strong>The code is valid for {OTP_EXPIRY_MINUTES} minutes.</strong></p>
        <p>If this was not you, change your password.</p>
    """
    return send_email(to_email, "Your login code | GymMaster", _render("Login Verification", content))


def send_2fa_enabled_email(to_email: str, username: str) -> bool:
    content = f"""
        <p>Hello <strong>{username}</strong>,</p>
        <p>Two-factor authentication is now on for your GymMaster account.</p>
        <p>From now on every login asks for a code that we send to this address.</p>
    """
    return send_email(to_email, "Two-factor authentication enabled | GymMaster", _render("Security Update", content))


def send_welcome_email(to_email: str, username: str) -> bool:
    """Send welcome email after successful registration"""
    content = f"""
        <p>Hello <strong>{username}</strong>,</p>
        <p>Welcome to GymMaster! Your account has been created.</p>
        <p>Show the QR code in your profile at the front desk to check in.</p>
    """
    return send_email(to_email, "Welcome to GymMaster!", _render("Welcome!", content))


def send_password_changed_email(to_email: str, username: str) -> bool:
    """Security notification after the password was changed or reset"""
    content = f"""
        <p>Hello <strong>{username}</strong>,</p>
        <p>The password of your GymMaster account was just changed.</p>
        <p>If this was not you, contact the front desk immediately.</p>
    """
    return send_email(to_email, "Your password was changed | GymMaster", _render("Security Alert", content))


def send_membership_expiry_reminder(to_email: str, username: str, expiry_date: str, days_remaining: int) -> bool:
    """
    Send membership expiry reminder email

    Args:
        to_email: Recipient email address
        username: Name of the member
        expiry_date: Membership expiry date
        days_remaining: Days until expiry

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    content = f"""
        <p>Hello <strong>{username}</strong>,</p>
        <p>Your GymMaster membership ends on <strong>{expiry_date}</strong> ({days_remaining} days left).</p>
        <p>Renew at any branch to keep training without interruption.</p>
    """
    return send_email(
        to_email,
        f"Your membership ends in {days_remaining} days | GymMaster",
        _render("Membership Reminder", content),
    )
