import datetime
import io
import json

import pytest
import pytz
from PIL import Image

import advent
from doors import build_calendar
from errors import StorageError
from mutations import UploadRequest


def _png_bytes():
    data = io.BytesIO()
    Image.new("RGB", (40, 40), "blue").save(data, "PNG")
    return data.getvalue()


@pytest.fixture
def client(tmp_path, monkeypatch):
    kalender = build_calendar(str(tmp_path))
    kalender.save_settings("2024-12-01", "Testkalender", "")
    monkeypatch.setattr(advent, "kalender", kalender)
    monkeypatch.setattr(advent, "ADMIN_USERNAME", "admin")
    monkeypatch.setattr(advent, "ADMIN_PASSWORD", "geheim")

    fake_now = datetime.datetime(2024, 12, 5, 12, 0, tzinfo=pytz.utc)
    monkeypatch.setattr(advent, "get_local_datetime", lambda: fake_now)

    return advent.app.test_client()


def _login(client, password="geheim"):
    return client.post("/api/admin/login", json={"username": "admin", "password": password})


def test_listing_gates_by_date(client):
    advent.kalender.pipeline.upload(3, UploadRequest("text", text="Tür drei"))
    advent.kalender.pipeline.upload(10, UploadRequest("text", text="Tür zehn"))

    first = client.get("/api")
    second = client.get("/api")
    body = first.get_json()

    assert first.status_code == 200
    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert first.headers["X-Advent-Day"] == "5"
    assert body["3"]["type"] == "text"
    assert body["3"]["data"] == "Tür drei"
    assert body["10"]["type"] == "not available yet"
    assert body["10"]["data"] is None


def test_listing_with_door_states_bypasses_cache(client):
    advent.kalender.pipeline.upload(
        4, UploadRequest("puzzle", file_name="raetsel.png", file_data=_png_bytes())
    )

    solved = client.get("/api", query_string={"doorStates": json.dumps({"4": {"win": True}})})
    plain = client.get("/api")

    assert solved.headers["X-Cache"] == "MISS"
    assert solved.get_json()["4"]["isSolved"] is True
    assert solved.get_json()["4"]["thumbnail"] == "/media/1004"
    assert plain.get_json()["4"]["isSolved"] is False
    assert plain.get_json()["4"]["data"] == "/media/1004"


def test_malformed_door_states(client):
    response = client.get("/api?doorStates={kaputt")
    assert response.status_code == 400


def test_single_door_status_codes(client):
    advent.kalender.pipeline.upload(2, UploadRequest("text", text="Offen"))

    assert client.get("/api/doors/2").get_json()["data"] == "Offen"
    assert client.get("/api/doors/9").status_code == 403
    assert client.get("/api/doors/25").status_code == 400
    assert client.get("/api/doors/1").get_json()["type"] == "not available yet"


def test_door_status_overview(client):
    advent.kalender.pipeline.upload(2, UploadRequest("text", text="Offen"))
    advent.kalender.pipeline.upload(12, UploadRequest("text", text="Zu"))

    status = client.get("/api/doors/status").get_json()

    assert status["2"] == {"hasContent": True, "isAvailable": True, "type": "locked"}
    assert status["12"]["hasContent"] is True
    assert status["12"]["isAvailable"] is False
    assert status["12"]["type"] == "not available yet"


def test_poll_vote_flow(client):
    advent.kalender.pipeline.upload(1, UploadRequest("poll", question="Tee?", options=["Ja", "Nein"]))
    advent.kalender.pipeline.upload(8, UploadRequest("poll", question="Später?", options=["Ja", "Nein"]))

    first = client.post("/api/poll/1/vote", json={"option": "Ja", "userId": "u1"})
    second = client.post("/api/poll/1/vote", json={"option": "Nein", "userId": "u1"})
    poll = client.get("/api/poll/1?userId=u1").get_json()

    assert first.get_json() == {"success": True, "votes": {"Ja": 1, "Nein": 0}, "userVote": "Ja"}
    assert second.get_json()["success"] is False
    assert poll["votes"] == {"Ja": 1, "Nein": 0}
    assert poll["userVote"] == "Ja"
    assert poll["pollData"]["question"] == "Tee?"

    assert client.post("/api/poll/1/vote", json={"option": "Vielleicht", "userId": "u2"}).status_code == 400
    assert client.post("/api/poll/8/vote", json={"option": "Ja", "userId": "u2"}).status_code == 423
    assert client.get("/api/poll/3").status_code == 404


def test_media_route(client):
    advent.kalender.pipeline.upload(2, UploadRequest("image", file_name="foto.png", file_data=_png_bytes()))
    advent.kalender.pipeline.upload(20, UploadRequest("image", file_name="foto.png", file_data=_png_bytes()))

    response = client.get("/media/2")

    assert response.status_code == 200
    assert response.mimetype == "image/png"
    assert client.get("/media/20").status_code == 423
    assert client.get("/media/3").status_code == 404
    assert client.get("/media/99").status_code == 404


def test_thumbnail_route_serves_generated_file(client):
    advent.kalender.pipeline.upload(2, UploadRequest("image", file_name="foto.png", file_data=_png_bytes()))

    thumbnail_url = client.get("/api").get_json()["2"]["thumbnail"]
    response = client.get(thumbnail_url)

    assert thumbnail_url.startswith("/thumbnails/thumb_2.jpg?v=")
    assert response.status_code == 200
    assert response.mimetype == "image/jpeg"
    assert client.get("/thumbnails/thumb_9.jpg").status_code == 404


def test_admin_requires_login(client):
    assert client.get("/api/admin/doors").status_code == 401
    assert client.get("/api/admin/verify").status_code == 401
    assert _login(client, password="falsch").status_code == 401
    assert client.get("/api/admin/doors").status_code == 401


def test_admin_upload_requires_csrf_token(client):
    token = _login(client).get_json()["csrfToken"]

    without_token = client.post("/api/admin/upload/3", data={"contentType": "text", "textContent": "Hallo"})
    with_token = client.post(
        "/api/admin/upload/3",
        data={"contentType": "text", "textContent": "Hallo"},
        headers={"X-CSRFToken": token},
    )

    assert without_token.status_code == 400
    assert without_token.get_json()["error"] == advent.CSRF_ERROR_MESSAGE
    assert with_token.status_code == 200
    assert advent.kalender.registry.get(3) == "3.txt"


def test_admin_file_upload_and_delete(client, tmp_path):
    token = _login(client).get_json()["csrfToken"]
    headers = {"X-CSRFToken": token}

    upload = client.post(
        "/api/admin/upload/4",
        data={"contentType": "image", "message": "Schönes Bild", "file": (io.BytesIO(_png_bytes()), "bild.png")},
        content_type="multipart/form-data",
        headers=headers,
    )
    doors = client.get("/api/admin/doors").get_json()

    assert upload.status_code == 200
    assert doors["4"]["type"] == "image"
    assert doors["4"]["text"] == "Schönes Bild"
    assert (tmp_path / "media" / "4.png").exists()

    assert client.delete("/api/admin/content/4", headers=headers).status_code == 200
    assert client.delete("/api/admin/content/4", headers=headers).status_code == 404
    assert not (tmp_path / "media" / "4.png").exists()


def test_admin_poll_upload_with_json_options(client):
    token = _login(client).get_json()["csrfToken"]

    response = client.post(
        "/api/admin/upload/5",
        data={"contentType": "poll", "question": "Glühwein?", "options": json.dumps(["Ja", "Nein"])},
        headers={"X-CSRFToken": token},
    )
    bad = client.post(
        "/api/admin/upload/5",
        data={"contentType": "poll", "question": "Glühwein?", "options": "[kaputt"},
        headers={"X-CSRFToken": token},
    )

    assert response.status_code == 200
    assert client.get("/api/admin/polls").get_json()["5"]["options"] == ["Ja", "Nein"]
    assert bad.status_code == 400
    assert advent.kalender.polls.get_poll(5) is not None


def test_admin_settings_and_cache(client):
    token = _login(client).get_json()["csrfToken"]
    headers = {"X-CSRFToken": token}

    saved = client.post(
        "/api/admin/settings",
        json={"startDate": "2024-12-03", "title": "Neu", "description": "Text"},
        headers=headers,
    )
    invalid = client.post("/api/admin/settings", json={"startDate": "morgen"}, headers=headers)

    assert saved.status_code == 200
    assert client.get("/api/settings").get_json()["startDate"] == "2024-12-03"
    assert client.get("/api").headers["X-Advent-Day"] == "3"
    assert invalid.status_code == 400

    before = client.get("/api/admin/cache").get_json()["timestamp"]
    cleared = client.post("/api/admin/cache", headers=headers).get_json()
    assert cleared["success"] is True
    assert cleared["timestamp"] > before


def test_logout_ends_session(client):
    _login(client)
    assert client.get("/api/admin/verify").status_code == 200

    client.post("/api/admin/logout")

    assert client.get("/api/admin/verify").status_code == 401


def test_storage_error_hides_details(client, monkeypatch):
    def _broken_listing(*_, **__):
        raise StorageError("/geheimer/pfad/medium.json konnte nicht gelesen werden")

    monkeypatch.setattr(advent.kalender, "list_doors", _broken_listing)

    response = client.get("/api")
    error = response.get_json()["error"]

    assert response.status_code == 500
    assert "Fehler-ID" in error
    assert "/geheimer/pfad" not in error
    assert "medium.json" not in error


def test_admin_credentials_are_created_once(client, monkeypatch):
    client.get("/api/settings")
    stored = advent.kalender.credentials.load()

    monkeypatch.setattr(advent, "ADMIN_PASSWORD", "anderes-passwort")
    advent.init_admin_credentials()

    assert advent.kalender.credentials.load() == stored
    assert _login(client).status_code == 200
    assert _login(client, password="anderes-passwort").status_code == 401
