from app.core.config import settings
from typing import Dict, Any, Optional
from loguru import logger
import aiosmtplib
import httpx
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart


class NotificationError(Exception):
    """Сбой канала доставки, не доменная ошибка: _dispatch_code ловит его и логирует"""


async def send_email_smtp(email_to: str, subject: str, body: str) -> bool:
    try:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
        message["To"] = email_to

        html_part = MIMEText(body, "html")
        message.attach(html_part)

        await aiosmtplib.send(
            message,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            start_tls=settings.SMTP_TLS,
        )

        logger.info(f"Email sent successfully to {email_to}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email: {str(e)}")
        return False


async def send_sms(phone: str, text: str) -> bool:
    if not settings.SMS_API_URL:
        logger.warning("SMS gateway is not configured, message dropped")
        return False
    try:
        async with httpx.AsyncClient(timeout=settings.SMS_TIMEOUT_SECONDS) as client:
            response = await client.post(
                settings.SMS_API_URL,
                headers={"api-key": settings.SMS_API_KEY or ""},
                json={
                    "sender": settings.SMS_SENDER,
                    "recipient": phone,
                    "content": text,
                    "type": "transactional",
                },
            )
            response.raise_for_status()
        logger.info(f"SMS sent successfully to {phone}")
        return True
    except httpx.HTTPError as e:
        logger.error(f"Failed to send SMS: {str(e)}")
        return False


def _code_block(code: str) -> str:
    return f"""
        <div style="background-color: #f4f4f4; padding: 12px; font-size: 24px; text-align: center; letter-spacing: 5px; font-weight: bold; border-radius: 4px; margin: 15px 0;">
            {code}
        </div>"""


def render_otp_email(data: Dict[str, Any]) -> str:
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>Authentification MediConnect</h2>
        <p>Bonjour {data.get('firstName', '')},</p>
        <p>Voici votre code de connexion au back-office:</p>
        {_code_block(data['code'])}
        <p>Ce code est valide pendant {data.get('validity', '10')} minutes.</p>
        <p>Si vous n'avez pas demandé ce code, veuillez sécuriser votre compte immédiatement.</p>
        <p style="color: #999; font-size: 12px;">© {data.get('year', '')} MediConnect</p>
    </body>
    </html>
    """


def render_password_reset_email(data: Dict[str, Any]) -> str:
    link = ""
    if data.get("redirectUrl"):
        link = f'<p><a href="{data["redirectUrl"]}">Définir un nouveau mot de passe</a></p>'
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>Réinitialisation de mot de passe</h2>
        <p>Bonjour {data.get('firstName', '')},</p>
        <p>Code de réinitialisation de votre mot de passe back-office:</p>
        {_code_block(data['code'])}
        {link}
        <p>Ce code est valide pendant {data.get('validity', '10')} minutes.</p>
        <p style="color: #999; font-size: 12px;">© {data.get('year', '')} MediConnect</p>
    </body>
    </html>
    """


def render_otp_sms(data: Dict[str, Any]) -> str:
    return (
        f"Votre code de connexion au back-office MediConnect est: {data['code']}. "
        f"Valide pendant {data.get('validity', '10')} minutes."
    )


def render_password_reset_sms(data: Dict[str, Any]) -> str:
    return (
        f"Votre code de réinitialisation de mot de passe MediConnect est: {data['code']}. "
        f"Valable pendant {data.get('validity', '10')} minutes."
    )


EMAIL_TEMPLATES = {
    "otp-email": render_otp_email,
    "password-reset-email": render_password_reset_email,
}

SMS_TEMPLATES = {
    "otp-sms": render_otp_sms,
    "password-reset-sms": render_password_reset_sms,
}


class NotificationService:
    """Отправка шаблонных сообщений по email (SMTP) или SMS (HTTP-шлюз)"""

    async def send(
            self,
            destination: str,
            subject: str,
            template_id: str,
            template_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        data = template_data or {}
        if template_id in EMAIL_TEMPLATES:
            sent = await send_email_smtp(destination, subject, EMAIL_TEMPLATES[template_id](data))
        elif template_id in SMS_TEMPLATES:
            sent = await send_sms(destination, SMS_TEMPLATES[template_id](data))
        else:
            raise NotificationError(f"Unknown notification template: {template_id}")

        if not sent:
            raise NotificationError(f"Delivery of '{template_id}' to {destination} failed")
