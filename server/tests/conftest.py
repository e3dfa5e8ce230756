# pyright: reportUnusedFunction=false
import os
import sys
import tempfile
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# CI points DATABASE_URL at PostgreSQL; locally the suite runs on a throwaway SQLite file.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="enrollgate-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP_DIR / 'enrollgate.db'}")
os.environ.setdefault("ADMIN_SYNC_SECRET", "test-admin-secret")
# Writers queue on SQLite's busy timeout; keep the deadline well above it.
os.environ.setdefault("REDEEM_TIMEOUT_SECONDS", "60")


def _ensure_test_schema() -> None:
    from enrollgate.db.base import Base
    from enrollgate.db.session import engine

    Base.metadata.create_all(bind=engine)


_ensure_test_schema()


@pytest.fixture(autouse=True)
def _isolate_db() -> None:
    from enrollgate.db.base import Base
    from enrollgate.db.session import engine
    from enrollgate.main import app

    cache = getattr(app.state, "organization_cache", None)
    if cache is not None:
        cache.clear()

    tables = list(Base.metadata.sorted_tables)
    if not tables:
        return

    with engine.begin() as conn:
        for t in reversed(tables):
            _ = conn.execute(t.delete())
