import asyncio
import inspect
from collections.abc import Iterator
from pathlib import Path

import pytest

from tracklinks.config import override_runtime_env
from tracklinks.db import init_db, reset_engine_for_tests


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run `@pytest.mark.asyncio` coroutine tests on a fresh event loop."""

    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None
    if not inspect.iscoroutinefunction(pyfuncitem.obj):
        return None
    names = pyfuncitem._fixtureinfo.argnames
    asyncio.run(pyfuncitem.obj(**{name: pyfuncitem.funcargs[name] for name in names}))
    return True


@pytest.fixture(autouse=True)
def catalog_database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point every test at its own sqlite catalog with no provider credentials."""

    db_path = tmp_path / "data" / "tracklinks.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("SONGLINK_API_KEY", raising=False)
    override_runtime_env(None)
    reset_engine_for_tests()
    init_db()
    yield db_path
    reset_engine_for_tests()
    override_runtime_env(None)
