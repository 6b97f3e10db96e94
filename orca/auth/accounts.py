import logging
from datetime import datetime, timedelta, timezone
import bcrypt
import jwt
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from orca.config import BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_SECRET, TOKEN_TTL_DAYS
from orca.errors import DuplicateEmail, EmailNotVerified, InvalidCredentials, Unauthenticated
from orca.models import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AccountService:
    """Registration, password checks and bearer tokens."""

    def __init__(self, engine, secret: str = JWT_SECRET, token_ttl: timedelta = timedelta(days=TOKEN_TTL_DAYS), rounds: int = BCRYPT_ROUNDS):
        self.engine = engine
        self.secret = secret
        self.token_ttl = token_ttl
        self.rounds = rounds

    def register(self, email: str, password: str) -> User:
        email = normalize_email(email)
        password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        with Session(self.engine) as session:
            if session.exec(select(User).where(User.email == email)).first() is not None:
                raise DuplicateEmail(email)
            user = User(email=email, password_hash=password_hash)
            session.add(user)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateEmail(email) from e
            session.refresh(user)
        logger.info(f"User registered: user_id={user.id}")
        return user

    def get_by_email(self, email: str):
        with Session(self.engine) as session:
            return session.exec(select(User).where(User.email == normalize_email(email))).first()

    def verify_password(self, email: str, password: str) -> User:
        user = self.get_by_email(email)
        if user is None or not bcrypt.checkpw(password.encode("utf-8"), user.password_hash.encode("utf-8")):
            raise InvalidCredentials(email)
        return user

    def mark_verified(self, email: str) -> None:
        with Session(self.engine) as session:
            user = session.exec(select(User).where(User.email == normalize_email(email))).first()
            if user is None:
                return
            user.verified = True
            session.add(user)
            user_id = user.id
            session.commit()
        logger.info(f"Email verified: user_id={user_id}")

    def login(self, email: str, password: str) -> str:
        user = self.get_by_email(email)
        if user is None:
            raise InvalidCredentials("User not found")
        if not user.verified:
            raise EmailNotVerified(email)
        user = self.verify_password(email, password)
        logger.info(f"User logged in: user_id={user.id}")
        return self.issue_token(user)

    def issue_token(self, user: User) -> str:
        payload = {
            "id": user.id,
            "email": user.email,
            "exp": datetime.now(tz=timezone.utc) + self.token_ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def resolve_token(self, token: str) -> User:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
        except jwt.PyJWTError as e:
            raise Unauthenticated(str(e)) from e
        with Session(self.engine) as session:
            user = session.get(User, payload.get("id"))
        if user is None:
            raise Unauthenticated("Unknown user")
        return user
