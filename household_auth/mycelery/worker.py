import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx

from household_auth.core.config import settings
from household_auth.db.session import Database
from household_auth.logging import get_logger
from household_auth.mycelery.app import celery_app
from household_auth.services.revocation import RevocationLedger
from household_auth.services.sms import SmsService

logger = get_logger("auth")

_SUBJECTS = {
    "login": "Your sign-in code",
    "second_factor": "Your two-factor verification code",
}


def _expiry_minutes(purpose: str) -> int:
    if purpose == "second_factor":
        return settings.TWO_FA_CODE_EXPIRE_MINUTES
    return settings.LOGIN_CODE_EXPIRE_MINUTES


def build_code_email(email: str, name: str, code: str, purpose: str) -> MIMEMultipart:
    from_email = settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME
    msg = MIMEMultipart()
    msg["From"] = f"{settings.SMTP_FROM_NAME} <{from_email}>"
    msg["To"] = email
    msg["Subject"] = f"{_SUBJECTS.get(purpose, _SUBJECTS['login'])} - {settings.APP_NAME}"

    greeting = f"Hi {name}," if name else "Hi,"
    body = f"""
    <html>
        <body>
            <p>{greeting}</p>
            <p>Your verification code is: <strong>{code}</strong></p>
            <p>This code expires in {_expiry_minutes(purpose)} minutes.</p>
            <p>If you did not request this code, you can ignore this email.</p>
            <hr>
            <p><small>{settings.APP_NAME} - please do not reply to this email</small></p>
        </body>
    </html>
    """
    msg.attach(MIMEText(body, "html"))
    return msg


@celery_app.task(name="send_code_email", bind=True, max_retries=3)
def send_code_email(self, email: str, name: str, code: str, purpose: str):
    """Envia o código por email usando SMTP"""
    if not settings.SMTP_USERNAME or not settings.SMTP_PASSWORD:
        logger.error("SMTP credentials not configured", exc_info=False)
        raise ValueError("SMTP credentials not configured")

    msg = build_code_email(email, name, code, purpose)
    from_email = settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME
    try:
        server = smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT, timeout=30)
        try:
            server.starttls()  # Habilita criptografia TLS
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.sendmail(from_email, email, msg.as_string())
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Erro ao enviar email para {email}", exc_info=False, error=str(e))
        # backoff exponencial: a cada falha o tempo de espera dobra
        raise self.retry(exc=e, countdown=2 ** self.request.retries)

    logger.info(f"Code email sent to {email}", purpose=purpose)
    return {"sent": True, "email": email}


@celery_app.task(name="send_code_email_local")
def send_code_email_local(email: str, name: str, code: str, purpose: str):
    """Simula envio do código localmente (para desenvolvimento)"""
    logger.info(f"Simulated code email to {email}", purpose=purpose, code_preview=code)
    return {"sent": True}


@celery_app.task(name="send_code_sms", bind=True, max_retries=3)
def send_code_sms(self, phone_number: str, code: str, purpose: str):
    """Envia o código por SMS via Twilio"""
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN or not settings.TWILIO_FROM_NUMBER:
        logger.error("Twilio credentials not configured", exc_info=False)
        raise ValueError("Twilio credentials not configured")

    sms_service = SmsService(
        api_url=settings.TWILIO_API_URL,
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        from_number=settings.TWILIO_FROM_NUMBER,
    )
    text = (
        f"{settings.APP_NAME}: your verification code is {code}. "
        f"It expires in {_expiry_minutes(purpose)} minutes."
    )
    try:
        sid = asyncio.run(sms_service.send_message(phone_number, text))
    except httpx.HTTPError as e:
        raise self.retry(exc=e, countdown=2 ** self.request.retries)
    return {"sent": True, "sid": sid}


@celery_app.task(name="send_code_sms_local")
def send_code_sms_local(phone_number: str, code: str, purpose: str):
    """Simula envio de SMS localmente (para desenvolvimento)"""
    logger.info(f"Simulated code SMS to {phone_number}", purpose=purpose, code_preview=code)
    return {"sent": True}


async def _purge(kind: str) -> int:
    database = Database()
    await database.open()
    try:
        async with database.session() as session:
            ledger = RevocationLedger(session)
            if kind == "tokens":
                return await ledger.purge_expired()
            return await ledger.purge_expired_devices()
    finally:
        await database.close()


@celery_app.task(name="purge_revoked_tokens")
def purge_revoked_tokens():
    removed = asyncio.run(_purge("tokens"))
    logger.info("Purged expired revoked tokens", removed=removed)
    return removed


@celery_app.task(name="purge_expired_trusted_devices")
def purge_expired_trusted_devices():
    removed = asyncio.run(_purge("devices"))
    logger.info("Purged expired trusted devices", removed=removed)
    return removed
