"""Tests for the contacts API: ownership rules, listing, export and pending sync."""
import csv
import io
from contextlib import contextmanager
from datetime import datetime

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from werkzeug.security import generate_password_hash

from app.contacthub import auth as auth_mod
from app.contacthub import create_app
from app.contacthub.db import session_scope
from app.contacthub.models import Base, ChangelogEntry, User
from app.contacthub.modules.contacts import api as contacts_api
from app.contacthub.modules.contacts import directory
from app.contacthub.modules.contacts.models import Contact

PASSWORD = "pw1234"


def _seed_users(s):
    users = [
        User(email="root@example.com", username="root", role="superadmin", name="Root Super", employee_number="0001", position="IT"),
        User(email="boss@example.com", username="boss", role="admin", name="Bea Boss", employee_number="0002", position="Manager"),
        User(email="alice@example.com", username="alice", role="user", name="Alice Agent", employee_number="0003", position="Sales"),
        User(email="bob@example.com", username="bob", role="user", name="Bob Agent", employee_number="0004", position="Sales"),
    ]
    for u in users:
        u.password_hash = generate_password_hash(PASSWORD)
    s.add_all(users)


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    auth_mod._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        _seed_users(s)

    return app.test_client()


def _login(client, login):
    r = client.post("/auth/login", json={"login": login, "password": PASSWORD})
    assert r.status_code == 200
    return r.json["csrf_token"]


def _logout(client):
    client.post("/auth/logout")


def _contact_payload(**overrides):
    payload = {
        "first_name": "Juan",
        "middle_name": "",
        "last_name": "Dela Cruz",
        "birthday": "1990-01-15",
        "phone": "09171234567",
        "company": "Acme Corp",
    }
    payload.update(overrides)
    return payload


def _create(client, token, **overrides):
    return client.post("/api/contacts", json=_contact_payload(**overrides), headers={"X-CSRF-Token": token})


def _db_down(*args, **kwargs):
    raise OperationalError("INSERT", {}, Exception("db down"))


@contextmanager
def _database_unreachable(app, *, statements=None):
    """Fail every statement at the engine (or only those starting with one of `statements`)."""
    engine = app.extensions["sqlalchemy_engine"]

    def _fail(conn, cursor, statement, parameters, context, executemany):
        if statements is None or statement.lstrip().upper().startswith(statements):
            raise OperationalError(statement, parameters, Exception("database is unreachable"))

    event.listen(engine, "before_cursor_execute", _fail)
    try:
        yield
    finally:
        event.remove(engine, "before_cursor_execute", _fail)


def test_create_contact_owned_by_creator(client):
    token = _login(client, "alice")
    r = _create(client, token)
    assert r.status_code == 201
    c = r.json["contact"]
    assert c["owner_name"] == "Alice Agent"
    assert c["middle_name"] == ""
    assert c["actions"] == ["edit"]

    with session_scope(client.application) as s:
        row = s.get(Contact, c["id"])
        assert row.middle_name is None
        ev = s.query(ChangelogEntry).filter(ChangelogEntry.action == "create").one()
        assert ev.entity == "contact"
        assert ev.entity_id == str(c["id"])
        assert ev.user_name == "Alice Agent"


def test_create_contact_validation(client):
    token = _login(client, "alice")
    r = client.post(
        "/api/contacts",
        json={"first_name": "  ", "last_name": "X", "birthday": "15/01/1990"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 400
    fields = {e["field"] for e in r.json["errors"]}
    assert fields == {"first_name", "birthday", "phone", "company"}


def test_user_cannot_edit_someone_elses_contact(client):
    token = _login(client, "alice")
    cid = _create(client, token).json["contact"]["id"]
    _logout(client)

    token = _login(client, "bob")
    r = client.patch(f"/api/contacts/{cid}", json={"company": "Hijack Inc"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 403

    r = client.get(f"/api/contacts/{cid}")
    assert r.json["contact"]["company"] == "Acme Corp"
    assert r.json["contact"]["actions"] == []


def test_owner_and_admin_can_edit(client):
    token = _login(client, "alice")
    cid = _create(client, token).json["contact"]["id"]
    r = client.patch(f"/api/contacts/{cid}", json={"phone": "0999"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert r.json["contact"]["phone"] == "0999"
    _logout(client)

    token = _login(client, "boss")
    r = client.put(f"/api/contacts/{cid}", json=_contact_payload(company="Globex"), headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert r.json["contact"]["company"] == "Globex"
    assert r.json["contact"]["owner_name"] == "Alice Agent"

    with session_scope(client.application) as s:
        updates = s.query(ChangelogEntry).filter(ChangelogEntry.action == "update").order_by(ChangelogEntry.id).all()
        assert [u.user_name for u in updates] == ["Alice Agent", "Bea Boss"]
        assert updates[0].details == "Changed: phone"


def test_only_superadmin_deletes(client):
    token = _login(client, "alice")
    cid = _create(client, token).json["contact"]["id"]
    r = client.delete(f"/api/contacts/{cid}", headers={"X-CSRF-Token": token})
    assert r.status_code == 403
    _logout(client)

    token = _login(client, "boss")
    r = client.delete(f"/api/contacts/{cid}", headers={"X-CSRF-Token": token})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "contacts.delete"
    _logout(client)

    token = _login(client, "root")
    r = client.delete(f"/api/contacts/{cid}", headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert client.get(f"/api/contacts/{cid}").status_code == 404


def test_list_actions_follow_role(client):
    token = _login(client, "alice")
    _create(client, token, first_name="Alice1")
    _logout(client)
    token = _login(client, "bob")
    _create(client, token, first_name="Bob1")

    r = client.get("/api/contacts")
    assert r.status_code == 200
    by_name = {c["first_name"]: c for c in r.json["contacts"]}
    assert by_name["Bob1"]["actions"] == ["edit"]
    assert by_name["Alice1"]["actions"] == []
    assert r.json["meta"]["source"] == "collaborative"
    assert r.json["meta"]["stale"] is False
    _logout(client)

    _login(client, "root")
    r = client.get("/api/contacts")
    assert all(c["actions"] == ["delete", "edit"] for c in r.json["contacts"])


def test_personal_scope_and_filters(client):
    token = _login(client, "alice")
    _create(client, token, first_name="Ann", company="Acme Corp")
    _create(client, token, first_name="Ben", company="Globex")
    _logout(client)
    token = _login(client, "bob")
    _create(client, token, first_name="Cid", company="Acme Corp")

    r = client.get("/api/contacts?scope=personal")
    assert [c["first_name"] for c in r.json["contacts"]] == ["Cid"]

    r = client.get("/api/contacts?company=acme")
    assert sorted(c["first_name"] for c in r.json["contacts"]) == ["Ann", "Cid"]
    assert r.json["filtered"] is True
    assert r.json["total"] == 3

    r = client.get("/api/contacts?company=acme&owner=alice")
    assert [c["first_name"] for c in r.json["contacts"]] == ["Ann"]


def test_export_csv(client):
    token = _login(client, "alice")
    _create(client, token, first_name="Ann")
    _create(client, token, first_name="Ben", company='Quote "Co", Ltd')

    r = client.get("/api/contacts/export?scope=personal")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "personal-contacts-" in r.headers["Content-Disposition"]

    text = r.data.decode("utf-8")
    assert len(text.split("\n")) == 3
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0][0] == "First Name"
    assert {row[5] for row in rows[1:]} == {"Acme Corp", 'Quote "Co", Ltd'}
    assert all(line.startswith('"') and line.endswith('"') for line in text.split("\n"))

    with session_scope(client.application) as s:
        ev = s.query(ChangelogEntry).filter(ChangelogEntry.action == "export").one()
        assert ev.description == "Exported 2 contacts to CSV"


def test_export_selected_ids(client):
    token = _login(client, "alice")
    a = _create(client, token, first_name="Ann").json["contact"]["id"]
    _create(client, token, first_name="Ben")
    r = client.get(f"/api/contacts/export?ids={a}")
    lines = r.data.decode("utf-8").split("\n")
    assert len(lines) == 2
    assert lines[1].startswith('"Ann"')


def test_vcard_download(client):
    token = _login(client, "bob")
    cid = _create(client, token).json["contact"]["id"]
    r = client.get(f"/api/contacts/{cid}/vcard")
    assert r.status_code == 200
    assert "Juan_Dela_Cruz.vcf" in r.headers["Content-Disposition"]
    body = r.data.decode("utf-8")
    assert body.startswith("BEGIN:VCARD\r\nVERSION:3.0\r\n")
    assert "BDAY:19900115\r\n" in body
    assert "ORG:Acme Corp\r\n" in body

    with session_scope(client.application) as s:
        assert s.query(ChangelogEntry).filter(ChangelogEntry.action == "download").count() == 1


def test_changes_since(client):
    token = _login(client, "alice")
    r = client.get("/api/contacts/changes?since=2000-01-01T00:00:00")
    assert r.json["contacts"] == []
    mark = r.json["server_time"]

    cid = _create(client, token).json["contact"]["id"]
    r = client.get(f"/api/contacts/changes?since={mark}")
    assert [c["id"] for c in r.json["contacts"]] == [cid]
    _logout(client)

    token = _login(client, "root")
    client.delete(f"/api/contacts/{cid}", headers={"X-CSRF-Token": token})
    r = client.get(f"/api/contacts/changes?since={mark}")
    assert r.json["contacts"] == []
    assert r.json["deleted_ids"] == [cid]

    assert client.get("/api/contacts/changes?since=yesterday").status_code == 400


def test_listing_serves_cache_when_database_stages_fail(client, monkeypatch):
    token = _login(client, "alice")
    _create(client, token, first_name="Ann")
    assert client.get("/api/contacts").json["meta"]["source"] == "collaborative"

    def _down(s, user):
        def fail():
            raise OperationalError("SELECT", {}, Exception("db down"))

        return [("collaborative", fail), ("table", fail)]

    monkeypatch.setattr(directory, "contact_stages", _down)
    r = client.get("/api/contacts")
    assert r.status_code == 200
    assert r.json["meta"]["source"] == "cache:session"
    assert r.json["meta"]["stale"] is True
    assert r.json["meta"]["warning"]
    assert [c["first_name"] for c in r.json["contacts"]] == ["Ann"]


def test_failed_create_is_queued_and_replayed(client, monkeypatch):
    token = _login(client, "alice")

    with monkeypatch.context() as m:
        m.setattr(contacts_api, "create_contact", _db_down)
        r = _create(client, token, first_name="Queued")
    assert r.status_code == 202
    assert r.json["pending_sync"] is True
    temp_id = r.json["contact"]["id"]
    assert temp_id.startswith("temp-")

    r = client.get("/api/contacts")
    assert r.json["pending_sync"] == 1
    queued = [c for c in r.json["contacts"] if c["id"] == temp_id]
    assert queued and queued[0]["pending_sync"] is True and queued[0]["actions"] == []

    r = client.post("/api/contacts/sync", headers={"X-CSRF-Token": token})
    assert r.status_code == 200
    assert r.json["synced"] == 1
    real_id = r.json["id_map"][temp_id]

    r = client.get("/api/contacts")
    assert r.json["pending_sync"] == 0
    assert [c["id"] for c in r.json["contacts"]] == [real_id]


def test_pending_create_replayed_on_login(client, monkeypatch):
    token = _login(client, "alice")
    with monkeypatch.context() as m:
        m.setattr(contacts_api, "create_contact", _db_down)
        assert _create(client, token).status_code == 202
    assert client.get("/api/contacts/pending").json["count"] == 1
    _logout(client)

    r = client.post("/auth/login", json={"login": "alice", "password": PASSWORD})
    assert r.json["pending_sync"]["synced"] == 1
    assert client.get("/api/contacts/pending").json["count"] == 0
    with session_scope(client.application) as s:
        assert s.query(Contact).count() == 1


def test_client_cannot_report_contact_deletes(client):
    token = _login(client, "alice")
    cid = _create(client, token).json["contact"]["id"]

    r = client.post(
        "/api/changelog",
        json={"action": "delete", "entity": "contact", "entity_id": str(cid), "description": "Deleted contact"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 400
    assert [e["field"] for e in r.json["errors"]] == ["action"]


def test_live_contacts_never_listed_as_deleted(client):
    token = _login(client, "alice")
    mark = client.get("/api/contacts/changes?since=2000-01-01T00:00:00").json["server_time"]
    cid = _create(client, token).json["contact"]["id"]
    with session_scope(client.application) as s:
        s.add(
            ChangelogEntry(
                timestamp=datetime.utcnow(),
                user_name="Alice Agent",
                user_role="user",
                action="delete",
                entity="contact",
                entity_id=str(cid),
                description="Deleted contact",
            )
        )

    r = client.get(f"/api/contacts/changes?since={mark}")
    assert [c["id"] for c in r.json["contacts"]] == [cid]
    assert r.json["deleted_ids"] == []


def test_outage_keeps_user_signed_in_and_serves_cache(client):
    token = _login(client, "alice")
    _create(client, token, first_name="Ann")
    assert client.get("/api/contacts").json["meta"]["source"] == "collaborative"

    with _database_unreachable(client.application):
        r = client.get("/api/contacts")
        assert r.status_code == 200
        assert r.json["meta"]["source"] == "cache:session"
        assert r.json["meta"]["stale"] is True
        assert [c["first_name"] for c in r.json["contacts"]] == ["Ann"]

        r = client.get("/auth/session")
        assert r.json["authenticated"] is True
        assert r.json["offline"] is True
        assert r.json["user"]["username"] == "alice"

    r = client.get("/auth/session")
    assert r.json["authenticated"] is True
    assert r.json["offline"] is False


def test_outage_on_single_record_is_503(client):
    token = _login(client, "alice")
    cid = _create(client, token).json["contact"]["id"]
    with _database_unreachable(client.application):
        r = client.get(f"/api/contacts/{cid}")
    assert r.status_code == 503
    assert r.json["request_id"]


def test_create_during_outage_is_queued_and_replayed_on_login(client):
    token = _login(client, "alice")

    with _database_unreachable(client.application, statements=("INSERT",)):
        r = _create(client, token, first_name="Queued")
    assert r.status_code == 202
    assert r.json["pending_sync"] is True
    assert r.json["contact"]["id"].startswith("temp-")
    assert r.json["contact"]["owner_name"] == "Alice Agent"

    with _database_unreachable(client.application):
        r = client.get("/api/contacts")
        assert r.status_code == 200
        assert r.json["pending_sync"] == 1
        assert [c["first_name"] for c in r.json["contacts"]] == ["Queued"]

    _logout(client)
    r = client.post("/auth/login", json={"login": "alice", "password": PASSWORD})
    assert r.json["pending_sync"]["synced"] == 1
    assert client.get("/api/contacts/pending").json["count"] == 0
    with session_scope(client.application) as s:
        assert [c.first_name for c in s.query(Contact).all()] == ["Queued"]


def test_logout_during_outage(client):
    _login(client, "alice")
    with _database_unreachable(client.application):
        assert client.post("/auth/logout").status_code == 200
    assert client.get("/auth/session").json["authenticated"] is False
