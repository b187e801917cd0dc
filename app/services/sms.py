"""
SMS delivery through AWS SNS.

Delivery is fire-and-forget: send_sms() returns whether SNS accepted
the message and never raises, so an OTP stays valid even if the text is lost.
"""
import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import settings

logger = logging.getLogger(__name__)

TEMPLATES = {
    "minimal": "Your {company} OTP is {otp}. Valid for {minutes} minutes. Don't share.",
    "professional": (
        "{company} Verification\n\n"
        "Code: {otp}\n"
        "Expires: {minutes} minutes\n\n"
        "Security Tip: Never share your OTP\n"
        "Questions? {support}"
    ),
    "corporate": (
        "{company_upper} AUTHENTICATION\n\n"
        "Verification Code: {otp}\n\n"
        "Valid for {minutes} minutes only.\n"
        "Do not share this code.\n\n"
        "If you did not request this, contact security immediately."
    ),
    "default": (
        "{company} Security Alert\n\n"
        "Your verification code is:\n\n"
        "{otp}\n\n"
        "Valid for: {minutes} minutes\n"
        "DO NOT share this code.\n\n"
        "Need help? {support}\n"
        "- {company} Team"
    ),
}


def render_otp_message(otp: str, template: Optional[str] = None) -> str:
    """Unknown template names fall back to "default"."""
    body = TEMPLATES.get(template or settings.sms_template, TEMPLATES["default"])
    return body.format(
        otp=otp,
        company=settings.company_name,
        company_upper=settings.company_name.upper(),
        support=settings.support_email,
        minutes=settings.otp_expiry_seconds // 60,
    )


def _sns_client():
    return boto3.client(
        "sns",
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
    )


def send_sms(phone: str, message: str) -> bool:
    if not settings.sms_enabled:
        logger.warning("AWS SNS not configured; skipping SMS to %s", phone)
        return False

    try:
        response = _sns_client().publish(
            PhoneNumber=phone,
            Message=message,
            MessageAttributes={
                "AWS.SNS.SMS.SenderID": {
                    "DataType": "String",
                    "StringValue": settings.sms_sender_id,
                },
                "AWS.SNS.SMS.SMSType": {
                    "DataType": "String",
                    "StringValue": "Transactional",
                },
            },
        )
    except (BotoCoreError, ClientError) as e:
        logger.error("Failed to send SMS to %s via SNS: %s", phone, e)
        return False

    logger.info("SMS sent to %s via SNS (message %s)", phone, response.get("MessageId"))
    return True


def send_otp_sms(phone: str, otp: str) -> bool:
    return send_sms(phone, render_otp_message(otp))
