import asyncio
import inspect
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Environment must be in place before anything builds the runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="customer_auth_test_")
os.environ.setdefault("IMAGE_STORAGE_DIR", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("API_URL", "http://testserver")
os.environ.setdefault("EXPOSE_OTP_ENDPOINT", "true")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from customer_auth.service.assets import ImageStorage  # noqa: E402
from customer_auth.service.customers import CustomerService  # noqa: E402
from customer_auth.service.decision import AuthDecisionEngine  # noqa: E402
from customer_auth.service.lockout import LockoutPolicy  # noqa: E402
from customer_auth.service.otp import OtpService  # noqa: E402
from customer_auth.service.runtime import reset_runtime_for_tests  # noqa: E402
from customer_auth.service.sessions import SessionManager  # noqa: E402
from customer_auth.storage.ephemeral import MemoryCache  # noqa: E402
from customer_auth.storage.memory import MemoryStore  # noqa: E402


class FakeClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FixedCodeGenerator:
    def __init__(self, *codes: int):
        self.codes = list(codes) or [123456]
        self.calls = 0

    def generate(self) -> int:
        code = self.codes[min(self.calls, len(self.codes) - 1)]
        self.calls += 1
        return code


class PlainHasher:
    """Reversible stand-in for argon2 so service tests stay fast."""

    def hash(self, password: str) -> str:
        return f"plain${password}"

    def verify(self, hashed: str, password: str) -> bool:
        return hashed == f"plain${password}"


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def code_generator():
    return FixedCodeGenerator(123456, 654321)


@pytest.fixture
def cache():
    return MemoryCache(lock_wait_seconds=1.0)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def images(tmp_path):
    return ImageStorage(tmp_path / "images", base_url="http://testserver")


@pytest.fixture
def customer_service(store, cache, clock, code_generator, images):
    return CustomerService(
        store,
        hasher=PlainHasher(),
        otp=OtpService(cache, generator=code_generator, clock=clock),
        lockout=LockoutPolicy(cache, clock=clock),
        decision=AuthDecisionEngine(store),
        sessions=SessionManager(cache, clock=clock),
        images=images,
        clock=clock,
    )


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
