import logging
import secrets
from datetime import datetime, timedelta
from typing import Tuple
from sqlmodel import Session, select, delete
from orca.auth.accounts import normalize_email
from orca.auth.mailer import Mailer
from orca.config import MAIL_SENDER_NAME, OTP_TTL_SECONDS
from orca.errors import ExpiredCode, InvalidCode
from orca.models import OneTimeCode, as_utc, utcnow

logger = logging.getLogger(__name__)


def generate_code() -> str:  # six digits, never a leading zero
    return str(100000 + secrets.randbelow(900000))


class OneTimeCodeService:
    """Email verification codes: one live code per address, valid for a fixed window."""

    def __init__(self, engine, mailer: Mailer, ttl_seconds: int = OTP_TTL_SECONDS, clock=utcnow):
        self.engine = engine
        self.mailer = mailer
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    def issue(self, email: str) -> Tuple[str, datetime]:
        email = normalize_email(email)
        code = generate_code()
        expires_at = self.clock() + self.ttl
        with Session(self.engine) as session:
            session.execute(delete(OneTimeCode).where(OneTimeCode.email == email))
            session.add(OneTimeCode(email=email, code=code, expires_at=expires_at))
            session.commit()
        minutes = int(self.ttl.total_seconds() // 60)
        self.mailer.send(
            email,
            f"{MAIL_SENDER_NAME} verification code",
            f"Your OTP code: {code}\nValid for {minutes} minutes.",
        )
        logger.info(f"OTP issued: email={email}, expires_at={expires_at.isoformat()}")
        return code, expires_at

    def verify(self, email: str, code: str) -> None:
        email = normalize_email(email)
        with Session(self.engine) as session:
            otp = session.exec(
                select(OneTimeCode).where(OneTimeCode.email == email, OneTimeCode.code == code)
            ).first()
            if otp is None:
                logger.warning(f"OTP rejected (invalid): email={email}")
                raise InvalidCode(email)
            if as_utc(otp.expires_at) < as_utc(self.clock()):
                logger.warning(f"OTP rejected (expired): email={email}")
                raise ExpiredCode(email)
            session.execute(delete(OneTimeCode).where(OneTimeCode.email == email))
            session.commit()
        logger.info(f"OTP accepted: email={email}")
