from fastapi import FastAPI, HTTPException, APIRouter, Depends, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
import anyio.to_thread
from typing import List, Optional
import os
import logging
from orca.auth.accounts import AccountService
from orca.auth.mailer import Mailer, build_mailer
from orca.auth.otp import OneTimeCodeService
from orca.chat.relay import RelayEngine, RelayTurn, SessionLocks
from orca.chat.sessions import SessionDirectory
from orca.chat.store import MessageStore
from orca.chat.upstream import UpstreamCompletionClient
from orca.config import CORS_ORIGINS, RELAY_LOCK_TIMEOUT, RELAY_MAX_SECONDS, RELAY_SESSION_LOCK
from orca.database import engine as default_engine, create_db_and_tables
from orca.errors import (
    DuplicateEmail, EmailNotVerified, ExpiredCode, Forbidden, InvalidCode,
    InvalidCredentials, SessionNotFound, TurnInProgress, Unauthenticated,
)
from orca.models import ChatSession, User
from orca.schemas import (
    ChatTurnRequest, CreateSessionRequest, CredentialsRequest, EmailRequest,
    MessageOut, RenameSessionRequest, SessionSummary, VerifyCodeRequest,
)

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(message)s')
logger = logging.getLogger(__name__)

router = APIRouter()


class Services:
    """Collaborators shared by every request, built once per application."""

    def __init__(self, engine, upstream: UpstreamCompletionClient, mailer: Mailer, relay_max_seconds=RELAY_MAX_SECONDS, session_lock: bool = RELAY_SESSION_LOCK):
        self.engine = engine
        self.accounts = AccountService(engine)
        self.otp = OneTimeCodeService(engine, mailer)
        self.directory = SessionDirectory(engine)
        self.store = MessageStore(engine)
        locks = SessionLocks(RELAY_LOCK_TIMEOUT) if session_lock else None
        self.relay = RelayEngine(self.store, upstream, max_seconds=relay_max_seconds, locks=locks)


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(authorization: Optional[str] = Header(default=None), services: Services = Depends(get_services)) -> User:  # resolves the caller from the bearer token
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token.", headers={"WWW-Authenticate": "Bearer"})
    try:
        return services.accounts.resolve_token(authorization[len("bearer "):].strip())
    except Unauthenticated:
        raise HTTPException(status_code=401, detail="Invalid or expired token.", headers={"WWW-Authenticate": "Bearer"})


def owned_session(services: Services, session_id: int, user: User) -> ChatSession:
    try:
        return services.directory.require_owner(session_id, user.id)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found.")
    except Forbidden:
        raise HTTPException(status_code=403, detail="You do not have access to this session.")


def summary(chat: ChatSession) -> SessionSummary:
    return SessionSummary(chat_id=chat.id, title=chat.title, created_at=chat.created_at)


class RelayResponse(StreamingResponse):
    """Streams one relay turn as chunked plain text.

    The body is closed and the turn's session lock released when the
    response ends, including when the client went away before the body
    started.
    """

    def __init__(self, turn: RelayTurn):
        self.turn = turn
        self.relay_body = turn.stream()
        super().__init__(
            self.relay_body,
            media_type="text/plain; charset=utf-8",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            # a half-read body commits what it streamed when closed
            try:
                await anyio.to_thread.run_sync(self.relay_body.close)
            finally:
                self.turn.close()


@router.get("/ping")
def ping():
    return "pong"

@router.post("/register")
def register(request: CredentialsRequest, services: Services = Depends(get_services)):
    logger.info(f"Register requested: email={request.email}")
    try:
        services.accounts.register(request.email, request.password)
        return {"ok": True}
    except DuplicateEmail:
        raise HTTPException(status_code=400, detail="Email already used.")
    except Exception as e:
        logger.error(f"Error in register: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during registration.")

@router.post("/send-otp")
def send_otp(request: EmailRequest, services: Services = Depends(get_services)):
    logger.info(f"OTP requested: email={request.email}")
    try:
        services.otp.issue(request.email)
        return {"ok": True}
    except Exception as e:
        logger.error(f"Error in send_otp: {e}")
        raise HTTPException(status_code=500, detail="Internal server error while sending the code.")

@router.post("/verify-otp")
def verify_otp(request: VerifyCodeRequest, services: Services = Depends(get_services)):
    logger.info(f"OTP verification requested: email={request.email}")
    try:
        services.otp.verify(request.email, request.code)
        services.accounts.mark_verified(request.email)
        return {"ok": True}
    except (InvalidCode, ExpiredCode):
        raise HTTPException(status_code=400, detail="OTP invalid / expired.")
    except Exception as e:
        logger.error(f"Error in verify_otp: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during verification.")

@router.post("/login")
def login(request: CredentialsRequest, services: Services = Depends(get_services)):
    logger.info(f"Login requested: email={request.email}")
    try:
        return {"token": services.accounts.login(request.email, request.password)}
    except EmailNotVerified:
        raise HTTPException(status_code=403, detail="Email not verified.")
    except InvalidCredentials:
        raise HTTPException(status_code=400, detail="Invalid email or password.")
    except Exception as e:
        logger.error(f"Error in login: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during login.")

@router.post("/sessions", response_model=SessionSummary)
def create_session(request: Optional[CreateSessionRequest] = None, user: User = Depends(current_user), services: Services = Depends(get_services)):
    logger.info(f"Session create requested: user_id={user.id}")
    try:
        chat = services.directory.create(user.id, request.title if request else None)
        return summary(chat)
    except Exception as e:
        logger.error(f"Error in create_session: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during session creation.")

@router.get("/sessions", response_model=List[SessionSummary])
def list_sessions(user: User = Depends(current_user), services: Services = Depends(get_services)):
    return [summary(chat) for chat in services.directory.list_for_owner(user.id)]

@router.patch("/sessions/{session_id}", response_model=SessionSummary)
def rename_session(session_id: int, request: RenameSessionRequest, user: User = Depends(current_user), services: Services = Depends(get_services)):
    owned_session(services, session_id, user)
    return summary(services.directory.rename(session_id, request.title))

@router.delete("/sessions/{session_id}")
def delete_session(session_id: int, user: User = Depends(current_user), services: Services = Depends(get_services)):
    logger.info(f"Delete session requested: session_id={session_id}")
    owned_session(services, session_id, user)
    try:
        services.directory.delete(session_id)
        return {"detail": "Session and messages deleted."}
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found.")
    except Exception as e:
        logger.error(f"Error in delete_session: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during session deletion.")

@router.get("/sessions/{session_id}/messages", response_model=List[MessageOut])
def session_messages(session_id: int, user: User = Depends(current_user), services: Services = Depends(get_services)):
    logger.info(f"Session history requested: session_id={session_id}")
    owned_session(services, session_id, user)
    return [MessageOut(role=m.role, content=m.content) for m in services.store.list_ordered(session_id)]

@router.post("/chat-turn")
def chat_turn(request: ChatTurnRequest, user: User = Depends(current_user), services: Services = Depends(get_services)):
    logger.info(f"Chat turn: session_id={request.session_id}, user_id={user.id}, chars={len(request.message)}")
    owned_session(services, request.session_id, user)
    try:
        turn = services.relay.start(request.session_id, request.message)
    except SessionNotFound:
        raise HTTPException(status_code=404, detail="Session not found.")
    except TurnInProgress:
        raise HTTPException(status_code=409, detail="A reply is still streaming for this session.")
    except Exception as e:
        logger.error(f"Error in chat_turn: {e}")
        raise HTTPException(status_code=500, detail="Internal server error during chat.")
    # no Content-Length, so the body goes out chunked as fragments arrive
    return RelayResponse(turn)


def create_app(engine=None, upstream: Optional[UpstreamCompletionClient] = None, mailer: Optional[Mailer] = None, **relay_options) -> FastAPI:
    engine = engine if engine is not None else default_engine
    app = FastAPI(title="Blue Orca API", version="1.0.0")
    app.state.services = Services(
        engine,
        upstream if upstream is not None else UpstreamCompletionClient(),
        mailer if mailer is not None else build_mailer(),
        **relay_options,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")  # Used once, to run code at application startup
    def on_startup():
        create_db_and_tables(engine)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("orca.app.main:app", host="0.0.0.0", port=int(os.environ.get("PORT", 3000)))
