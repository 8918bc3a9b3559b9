"""
Shared pytest fixtures for the Secure Vault test suite.

Autouse fixtures below isolate tests from the live application data:
  - Audit logger    -> temp directory
  - Data directory  -> temp directory (SECURE_VAULT_DATA_DIR)
  - Session manager -> fresh singleton per test

The ``session`` fixture builds a SessionManager with a fake clock, a
recording timer factory and a low bcrypt cost.
"""

import pytest

TEST_BCRYPT_ROUNDS = 4


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import secure_vault.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("SECURE_VAULT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("SECURE_VAULT_AUDIT_DIR", raising=False)


@pytest.fixture(autouse=True)
def _isolate_session_manager():
    """Reset the SessionManager singleton (and stop its timer) per test."""
    import secure_vault.vault.session as session_mod

    old_instance = session_mod._instance
    session_mod._instance = None

    yield

    if session_mod._instance is not None:
        session_mod._instance.lock()
    session_mod._instance = old_instance


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTimer:
    """threading.Timer stand-in; fire() runs the callback synchronously."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


class TimerRecorder:
    def __init__(self):
        self.created = []

    def __call__(self, *args, **kwargs):
        timer = FakeTimer(*args, **kwargs)
        self.created.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.created if t.started and not t.cancelled]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return TimerRecorder()


@pytest.fixture
def config_store(tmp_path):
    from secure_vault.vault.config_store import ConfigStore
    return ConfigStore(db_path=tmp_path / "config.db")


@pytest.fixture
def vault_store(tmp_path):
    from secure_vault.vault.vault_store import VaultStore
    return VaultStore(path=tmp_path / "vault.dat")


@pytest.fixture
def session(config_store, vault_store, clock, timers):
    from secure_vault.vault.session import SessionManager
    manager = SessionManager(
        config_store,
        vault_store,
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
        clock=clock,
        timer_factory=timers,
    )
    yield manager
    manager.lock()
