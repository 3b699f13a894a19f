# CirrusFlags/cirrusflags/tests/test_app.py
"""
Integration tests for the CirrusFlags Flask application.

These tests exercise the real Flask app wired to an in-memory FlagEngine
to ensure that all components work together as expected.

They:
- build the app through create_app() with a fresh engine per module,
- hit the real HTTP routes through Flask's test client,
- use distinct flag keys per test so tests stay independent.
"""


import pytest

from cirrusflags.app import create_app
from cirrusflags.config import EngineConfig
from cirrusflags.services.flag_service import FlagEngine


PROMO_FLAG = {
    "key": "promo_premium_ca",
    "enabled": True,
    "variants": [
        {"id": "off", "value": False, "is_control": True},
        {"id": "on", "value": True, "payload": {"discount_percentage": 40}},
    ],
    "default_variant": "off",
    "off_variant": "off",
    "targeting_rules": [
        {
            "id": "premium-north-america",
            "variant_id": "on",
            "conditions": {
                "operator": "and",
                "conditions": [
                    {
                        "attribute": "user.plan",
                        "operator": "equals",
                        "value": "premium",
                    },
                    {
                        "attribute": "network.country_code",
                        "operator": "in",
                        "value": ["CA", "US"],
                    },
                ],
            },
        }
    ],
}


@pytest.fixture(scope="module")
def engine():
    return FlagEngine(EngineConfig())


@pytest.fixture(scope="module")
def client(engine):
    flask_app = create_app(engine=engine)
    with flask_app.test_client() as c:
        yield c


def _seed_flag(client, body=None):
    """Create or update a flag through the admin API (idempotent upsert)."""
    r = client.post("/admin/flags/", json=body or PROMO_FLAG)
    assert r.status_code == 200
    return r.get_json()


def _simple_flag(key, **extra):
    body = {
        "key": key,
        "variants": [
            {"id": "off", "value": False, "is_control": True},
            {"id": "on", "value": True},
        ],
        "default_variant": "on",
        "off_variant": "off",
    }
    body.update(extra)
    return body


# ---------- System ----------


def test_health(client):
    r = client.get("/health/")
    assert r.status_code == 200
    data = r.get_json()
    assert data["status"] == "ok"
    assert {"flags", "segments"} <= set(data)


# ---------- Admin: flags ----------


def test_admin_upsert_and_get(client):
    data = _seed_flag(client)
    assert data["key"] == "promo_premium_ca"
    assert data["id"] == "promo_premium_ca"
    assert data["lifecycle"]["state"] == "draft"
    assert data["variants"][1]["payload"]["discount_percentage"] == 40

    r = client.get("/admin/flags/promo_premium_ca")
    assert r.status_code == 200
    assert r.get_json()["targeting_rules"][0]["id"] == "premium-north-america"

    listing = client.get("/admin/flags/?limit=10")
    assert "promo_premium_ca" in [f["key"] for f in listing.get_json()]


def test_upsert_keeps_existing_lifecycle(client):
    _seed_flag(client, _simple_flag("keeps-lifecycle"))
    r = client.post(
        "/admin/flags/keeps-lifecycle/lifecycle",
        json={"action": "activate", "user": "alice"},
    )
    assert r.status_code == 200

    updated = _seed_flag(client, _simple_flag("keeps-lifecycle", enabled=False))
    assert updated["enabled"] is False
    assert updated["lifecycle"]["state"] == "active"


def test_admin_rejects_invalid_payload(client):
    r = client.post("/admin/flags/", json={"key": "no-variants"})
    assert r.status_code == 400
    data = r.get_json()
    assert data["error"] == "BadRequest"
    assert data["detail"].startswith("Invalid FlagConfig")


def test_admin_rejects_unknown_default_variant(client):
    r = client.post("/admin/flags/", json=_simple_flag("bad", default_variant="maybe"))
    assert r.status_code == 400
    assert "maybe" in r.get_json()["detail"]


def test_admin_get_unknown_flag(client):
    r = client.get("/admin/flags/does_not_exist")
    assert r.status_code == 404
    assert r.get_json()["error"] == "NotFound"


def test_batch_put_is_atomic_and_rejects_cycles(client):
    body = {
        "flags": [
            _simple_flag(
                "cycle-a", dependencies=[{"target_flag": "cycle-b", "type": "requires"}]
            ),
            _simple_flag(
                "cycle-b", dependencies=[{"target_flag": "cycle-a", "type": "requires"}]
            ),
        ]
    }
    r = client.put("/admin/flags/", json=body)
    assert r.status_code == 400
    assert r.get_json()["detail"] == (
        "Circular dependency detected: cycle-a -> cycle-b -> cycle-a"
    )
    assert client.get("/admin/flags/cycle-a").status_code == 404

    ok = client.put(
        "/admin/flags/",
        json={
            "flags": [
                _simple_flag("batch-parent"),
                _simple_flag(
                    "batch-child",
                    dependencies=[{"target_flag": "batch-parent", "type": "requires"}],
                ),
            ]
        },
    )
    assert ok.status_code == 200
    assert [f["key"] for f in ok.get_json()] == ["batch-parent", "batch-child"]


def test_batch_put_rejects_duplicate_keys(client):
    r = client.put(
        "/admin/flags/", json={"flags": [_simple_flag("dup"), _simple_flag("dup")]}
    )
    assert r.status_code == 400


def test_delete_flag_is_idempotent(client):
    _seed_flag(client, _simple_flag("short-lived"))
    assert client.delete("/admin/flags/short-lived").status_code == 204
    assert client.delete("/admin/flags/short-lived").status_code == 204
    assert client.get("/admin/flags/short-lived").status_code == 404


# ---------- Admin: lifecycle ----------


def test_lifecycle_transitions(client):
    _seed_flag(client, _simple_flag("lc-flag"))

    r = client.post(
        "/admin/flags/lc-flag/lifecycle",
        json={"action": "deprecate", "user": "alice"},
    )
    assert r.status_code == 409
    assert r.get_json()["error"] == "Conflict"

    r = client.post(
        "/admin/flags/lc-flag/lifecycle",
        json={"action": "activate", "user": "alice", "reason": "launch"},
    )
    assert r.status_code == 200
    assert r.get_json()["lifecycle"]["state"] == "active"

    r = client.post(
        "/admin/flags/lc-flag/lifecycle",
        json={
            "action": "deprecate",
            "user": "alice",
            "removal_date": "2030-01-01T00:00:00Z",
        },
    )
    assert r.status_code == 200
    assert r.get_json()["lifecycle"]["removal_date"].startswith("2030-01-01")


def test_lifecycle_unknown_flag_and_bad_action(client):
    r = client.post(
        "/admin/flags/ghost/lifecycle", json={"action": "activate", "user": "alice"}
    )
    assert r.status_code == 404

    r = client.post(
        "/admin/flags/ghost/lifecycle", json={"action": "launch", "user": "alice"}
    )
    assert r.status_code == 400


# ---------- Admin: segments ----------


def test_segments_crud(client):
    r = client.post(
        "/admin/segments/",
        json={
            "segments": [
                {"id": "beta", "name": "Beta testers", "included_users": ["u-1"]}
            ]
        },
    )
    assert r.status_code == 200
    assert r.get_json()[0]["included_users"] == ["u-1"]

    ids = [s["id"] for s in client.get("/admin/segments/").get_json()]
    assert "beta" in ids

    assert client.delete("/admin/segments/beta").status_code == 204
    ids = [s["id"] for s in client.get("/admin/segments/").get_json()]
    assert "beta" not in ids


def test_segments_reject_invalid_payload(client):
    r = client.post("/admin/segments/", json={"segments": [{"id": "no-name"}]})
    assert r.status_code == 400


# ---------- Evaluation ----------


def test_evaluate_pass_fail_unknown(client):
    _seed_flag(client)

    # pass
    r = client.post(
        "/evaluate/",
        json={
            "flag_key": "promo_premium_ca",
            "context": {
                "user": {"id": "u-1", "plan": "premium"},
                "network": {"country_code": "CA"},
            },
        },
    )
    assert r.status_code == 200
    data = r.get_json()
    assert data["value"] is True
    assert data["variant_id"] == "on"
    assert data["reason"] == "RULE_MATCH"
    assert data["rule_id"] == "premium-north-america"

    # fail (missing attribute)
    r = client.post(
        "/evaluate/",
        json={
            "flag_key": "promo_premium_ca",
            "context": {"user": {"id": "u-2", "plan": "premium"}},
        },
    )
    assert r.status_code == 200
    data = r.get_json()
    assert data["value"] is False
    assert data["reason"] == "DEFAULT"

    # unknown flag -> 404
    r = client.post(
        "/evaluate/",
        json={"flag_key": "does_not_exist", "context": {"user": {"id": "u-1"}}},
    )
    assert r.status_code == 404
    assert r.get_json()["error"] == "NotFound"


def test_evaluate_requires_flag_key(client):
    r = client.post("/evaluate/", json={"context": {}})
    assert r.status_code == 400
    assert r.get_json()["error"] == "BadRequest"


def test_evaluate_all(client):
    _seed_flag(client)
    r = client.post(
        "/evaluate/all",
        json={
            "flag_keys": ["promo_premium_ca", "ghost"],
            "context": {"user": {"id": "u-3"}},
        },
    )
    assert r.status_code == 200
    data = r.get_json()
    assert data["promo_premium_ca"]["reason"] == "DEFAULT"
    assert data["ghost"]["reason"] == "OFF"
    assert data["ghost"]["error"]["code"] == "FLAG_NOT_FOUND"


def test_evaluate_respects_dependencies(client):
    _seed_flag(client, _simple_flag("dep-parent", enabled=False))
    _seed_flag(
        client,
        _simple_flag(
            "dep-child",
            dependencies=[{"target_flag": "dep-parent", "type": "requires"}],
        ),
    )
    r = client.post("/evaluate/", json={"flag_key": "dep-child"})
    data = r.get_json()
    assert data["reason"] == "DEPENDENCY_FAILED"
    assert data["metadata"]["failed_dependency"] == "dep-parent"


# ---------- Reports ----------


def test_reports(client):
    _seed_flag(client)

    cleanup = client.get("/reports/cleanup")
    assert cleanup.status_code == 200
    assert "technical_debt_score" in cleanup.get_json()

    health = client.get("/reports/health/promo_premium_ca")
    assert health.status_code == 200
    assert 0 <= health.get_json()["health_score"] <= 100
    assert client.get("/reports/health/ghost").status_code == 404

    deps = client.get("/reports/dependencies")
    assert deps.status_code == 200
    assert set(deps.get_json()) == {"graph", "cycles", "validation"}

    dot = client.get("/reports/dependencies.dot")
    assert dot.status_code == 200
    assert dot.data.startswith(b"digraph FlagDependencies {")


# ---------- Docs ----------


def test_openapi_and_schemas(client):
    yml = client.get("/openapi.yaml")
    assert yml.status_code == 200
    assert b"openapi: 3." in yml.data

    index = client.get("/schemas/").get_json()["schemas"]
    for name in [
        "flag_config.schema.json",
        "segment_config.schema.json",
        "EvaluateRequest.schema.json",
        "EvaluateResponse.schema.json",
        "lifecycle_action.schema.json",
    ]:
        assert name in index
        rr = client.get(f"/schemas/{name}")
        assert rr.status_code == 200
        assert rr.data.strip().startswith(b"{")

    assert client.get("/schemas/missing.json").status_code == 404
    assert client.get("/docs").status_code == 200
