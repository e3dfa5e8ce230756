# pyright: reportMissingImports=false
# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportAny=false

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from sqlalchemy import select

from enrollgate.db.models import Organization, RedemptionCode, User
from enrollgate.db.session import SessionLocal
from enrollgate.main import app


def _random_email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}@example.com"


def _seed_code(code: str, *, name: str = "Oakwood High", plan: str | None = "school-basic") -> None:
    with SessionLocal() as db:
        org = Organization(name=name, plan=plan)
        db.add(org)
        db.flush()
        db.add(RedemptionCode(code=code, organization_id=org.id))
        db.commit()


def _seed_user() -> str:
    email = _random_email("u")
    with SessionLocal() as db:
        db.add(User(email=email))
        db.commit()
    return email


def test_redeem_ok_returns_entity() -> None:
    _seed_code("ABC123")
    email = _seed_user()

    client = TestClient(app)
    resp = client.post("/api/v1/redeem", json={"code": "ABC123", "identity": email})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "entity": {"name": "Oakwood High", "plan": "school-basic"}}


def test_redeem_abc123_second_user_conflicts() -> None:
    _seed_code("ABC123")
    u1 = _seed_user()
    u2 = _seed_user()

    client = TestClient(app)
    r1 = client.post("/api/v1/redeem", json={"code": "ABC123", "identity": u1})
    assert r1.status_code == 200

    r2 = client.post("/api/v1/redeem", json={"code": "ABC123", "identity": u2})
    assert r2.status_code == 409
    assert r2.json() == {"ok": False, "error": "already_redeemed"}

    with SessionLocal() as db:
        row = db.execute(select(RedemptionCode).where(RedemptionCode.code == "ABC123")).scalar_one()
        first = db.execute(select(User).where(User.email == u1)).scalar_one()
    assert row.redeemed_by == first.id


def test_redeem_unknown_code_is_404() -> None:
    email = _seed_user()

    client = TestClient(app)
    resp = client.post("/api/v1/redeem", json={"code": "ZZZZ", "identity": email})
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "code_not_found"}


def test_redeem_unknown_identity_is_404() -> None:
    _seed_code("ABC123")

    client = TestClient(app)
    resp = client.post(
        "/api/v1/redeem", json={"code": "ABC123", "identity": _random_email("nobody")}
    )
    assert resp.status_code == 404
    assert resp.json() == {"ok": False, "error": "identity_not_found"}


def test_redeem_bound_identity_is_409() -> None:
    _seed_code("FIRST", name="Oakwood High")
    _seed_code("SECOND", name="Riverside Middle")
    email = _seed_user()

    client = TestClient(app)
    assert client.post("/api/v1/redeem", json={"code": "FIRST", "identity": email}).status_code == 200

    resp = client.post("/api/v1/redeem", json={"code": "SECOND", "identity": email})
    assert resp.status_code == 409
    assert resp.json() == {"ok": False, "error": "identity_already_bound"}


def test_redeem_missing_fields_are_400() -> None:
    client = TestClient(app)

    r = client.post("/api/v1/redeem", json={"identity": "u@example.com"})
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "missing_code"}

    r = client.post("/api/v1/redeem", json={"code": "  ", "identity": "u@example.com"})
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "missing_code"}

    r = client.post("/api/v1/redeem", json={"code": "ABC123"})
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "missing_identity"}


def test_redeem_schema_violation_is_invalid_request() -> None:
    client = TestClient(app)

    r = client.post("/api/v1/redeem", json={"code": 123, "identity": ["x"]})
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "invalid_request"}

    r = client.post("/api/v1/redeem", json={"code": "A" * 500, "identity": "u@example.com"})
    assert r.status_code == 400
    assert r.json() == {"ok": False, "error": "invalid_request"}
