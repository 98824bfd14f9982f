"""
Background jobs:
  1. Close visits left open past AUTO_CHECKOUT_HOURS
  2. Mark ended memberships as expired
  3. Send membership expiry reminders (7 and 3 days ahead)
  4. Audit retention and OTP cleanup

Every job opens its own session from the Database it is given and never
raises into the scheduler thread.
"""
import logging
from datetime import datetime

from gymmaster.config import AUDIT_RETENTION_DAYS, AUTO_CHECKOUT_HOURS
from gymmaster.services import audit_service, checkin_service, membership_service
from gymmaster.utils.email import send_membership_expiry_reminder
from gymmaster.utils.otp import cleanup_expired_otps

logger = logging.getLogger(__name__)

REMINDER_DAYS = (7, 3)


def job_auto_close_visits(database, now: datetime = None) -> int:
    """Hourly: close every open visit older than AUTO_CHECKOUT_HOURS"""
    try:
        with database.session_scope() as db:
            closed = checkin_service.auto_close_stale_visits(db, AUTO_CHECKOUT_HOURS, now=now)
        logger.info("Auto-close job done: %d visits closed", closed)
        return closed
    except Exception as e:
        logger.error("Error in job_auto_close_visits: %s", e, exc_info=True)
        return 0


def job_expire_memberships(database, now: datetime = None) -> int:
    """ACTIVE memberships whose end date has passed become EXPIRED"""
    try:
        with database.session_scope() as db:
            expired = membership_service.expire_memberships(db, now=now)
        logger.info("Expire job done: %d memberships marked as expired", expired)
        return expired
    except Exception as e:
        logger.error("Error in job_expire_memberships: %s", e, exc_info=True)
        return 0


def job_send_expiry_reminders(database, now: datetime = None) -> int:
    """
    Email members whose ACTIVE membership ends 7 or 3 days from today.
    A failed email is logged by the mailer and does not stop the others.
    """
    now = now or datetime.now()
    sent = 0
    eligible = 0
    try:
        with database.session_scope() as db:
            for days in REMINDER_DAYS:
                rows = membership_service.expiring_for_reminder(db, days, now=now)
                eligible += len(rows)
                for email, first_name, end_date in rows:
                    if send_membership_expiry_reminder(
                        to_email=email,
                        username=first_name,
                        expiry_date=end_date.strftime("%d %B %Y"),
                        days_remaining=days,
                    ):
                        sent += 1
    except Exception as e:
        logger.error("Error in job_send_expiry_reminders: %s", e, exc_info=True)

    logger.info("Expiry reminder job done: %d emails sent from %d eligible", sent, eligible)
    return sent


def job_cleanup(database, now: datetime = None) -> dict:
    """Daily retention: old audit records and used/expired OTP codes"""
    result = {"audit_logs": 0, "otp_codes": 0}
    try:
        with database.session_scope() as db:
            result["audit_logs"] = audit_service.cleanup_old_logs(db, AUDIT_RETENTION_DAYS, now=now)
            result["otp_codes"] = cleanup_expired_otps(db)
        logger.info(
            "Cleanup job done: %d audit records, %d OTP codes removed",
            result["audit_logs"], result["otp_codes"],
        )
    except Exception as e:
        logger.error("Error in job_cleanup: %s", e, exc_info=True)
    return result
