import pytest
from fastapi.testclient import TestClient
from orca.app.main import create_app
from orca.auth.accounts import AccountService
from orca.auth.mailer import Mailer
from orca.chat.sessions import SessionDirectory
from orca.chat.store import MessageStore
from orca.database import make_engine, create_db_and_tables


class ScriptedUpstream:
    """Stands in for the model provider: yields the given fragments, then raises ``error`` if set."""

    def __init__(self, fragments=(), error=None):
        self.fragments = list(fragments)
        self.error = error
        self.histories = []
        self.closed = False

    def stream(self, history):
        self.histories.append(list(history))
        return self._run()

    def _run(self):
        try:
            for fragment in self.fragments:
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class RecordingMailer(Mailer):
    def __init__(self):
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "body": body})


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", echo=False)
    create_db_and_tables(engine)
    return engine


@pytest.fixture
def store(engine):
    return MessageStore(engine)


@pytest.fixture
def directory(engine):
    return SessionDirectory(engine)


@pytest.fixture
def owner(engine):
    return AccountService(engine, rounds=4).register("owner@example.com", "secret-pass")


@pytest.fixture
def chat(directory, owner):
    return directory.create(owner.id)


@pytest.fixture
def upstream():
    return ScriptedUpstream(["I'm ", "fine, thanks"])


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(engine, upstream, mailer):
    app = create_app(engine=engine, upstream=upstream, mailer=mailer, relay_max_seconds=None)
    app.state.services.accounts.rounds = 4
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def login_as(app):
    accounts = app.state.services.accounts

    def _login(email):
        user = accounts.register(email, "secret-pass")
        accounts.mark_verified(email)
        return {"Authorization": f"Bearer {accounts.issue_token(user)}"}
    return _login
