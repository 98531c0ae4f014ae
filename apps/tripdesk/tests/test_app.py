import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import registration_data
from tripdesk.app import create_app
from tripdesk.avatars import placeholder_avatar_url


@pytest.fixture
def unconfigured_client(config):
    class NoBackend(config):
        BACKEND_URL = ""
        BACKEND_KEY = ""

    with TestClient(create_app(NoBackend)) as test_client:
        yield test_client


def _participants(client):
    return client.app.state.service.backend.rows.select("participants", order_by="created_at")


def test_pages_show_setup_notice_without_backend(unconfigured_client):
    for path in ("/register", "/participants", "/donations"):
        response = unconfigured_client.get(path)
        assert response.status_code == 503
        assert "Database Setup Required" in response.text

    home = unconfigured_client.get("/")
    assert home.status_code == 200
    assert "Registration opens once the site is connected" in home.text


def test_live_socket_closes_without_backend(unconfigured_client):
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with unconfigured_client.websocket_connect("/live/participants") as ws:
            ws.receive_json()
    assert excinfo.value.code == 1013


def test_static_pages(client):
    assert "Nyandarua" in client.get("/").text
    assert client.get("/about").status_code == 200
    assert client.get("/contact").status_code == 200


def test_pages_render_with_request_context(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.template.name == "public/index.html"
    assert response.context["request"].url.path == "/"
    assert response.context["configured"] is True


def test_register_redirects_to_confirmation(client):
    response = client.post("/register", data=registration_data(), follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/register/done"

    done = client.get("/register/done")
    assert "Registration Successful!" in done.text
    assert "Fully Paid" in done.text

    rows = _participants(client)
    assert len(rows) == 1
    assert rows[0]["full_name"] == "Jane Doe"
    assert rows[0]["avatar_url"] == placeholder_avatar_url("Jane Doe")


def test_confirmation_requires_a_registration(client):
    response = client.get("/register/done", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/register"


def test_register_shows_field_errors(client):
    response = client.post("/register", data=registration_data(phone_number="0812345678", full_name=""))
    assert response.status_code == 200
    assert "Please enter a valid Kenyan phone number" in response.text
    assert "Full name is required" in response.text
    assert _participants(client) == []


def test_register_with_avatar_upload_is_served(client):
    response = client.post(
        "/register",
        data=registration_data(),
        files={"avatar": ("jane.png", b"\x89PNG-bytes", "image/png")},
        follow_redirects=False,
    )
    assert response.status_code == 303

    avatar_url = _participants(client)[0]["avatar_url"]
    assert avatar_url.startswith("http://testserver/storage/v1/object/public/participant-avatars/avatars/")
    served = client.get(avatar_url)
    assert served.status_code == 200
    assert served.content == b"\x89PNG-bytes"


def test_register_rejects_non_image_upload(client):
    response = client.post(
        "/register",
        data=registration_data(),
        files={"avatar": ("notes.txt", b"hello", "text/plain")},
    )
    assert "Please upload an image file" in response.text
    assert _participants(client) == []


def test_participants_page_lists_and_backfills(client):
    client.app.state.service.backend.rows.insert(
        "participants",
        [
            {
                "full_name": "Brian Mwangi",
                "phone_number": "0712345678",
                "email": "brian@example.com",
                "number_of_guests": 3,
                "payment_status": "partial",
                "amount_paid": 1000,
            }
        ],
    )

    response = client.get("/participants")

    assert response.status_code == 200
    assert "Brian Mwangi" in response.text
    assert placeholder_avatar_url("Brian Mwangi").replace("&", "&amp;") in response.text
    assert "Partial Payment: 1" in response.text
    assert _participants(client)[0]["avatar_url"] == placeholder_avatar_url("Brian Mwangi")


def test_avatar_edit(client):
    client.post("/register", data=registration_data(), follow_redirects=False)
    participant_id = _participants(client)[0]["id"]

    assert client.get(f"/participants/{participant_id}/avatar").status_code == 200
    assert client.get("/participants/unknown/avatar").status_code == 404

    response = client.post(
        f"/participants/{participant_id}/avatar",
        files={"avatar": ("new.gif", b"GIF89a", "image/gif")},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert _participants(client)[0]["avatar_url"].endswith(".gif")


def test_donation_flow(client):
    client.post("/register", data=registration_data(full_name="Amina Otieno"), follow_redirects=False)
    participant_id = _participants(client)[0]["id"]

    form_page = client.get(f"/donations?participant_id={participant_id}")
    assert "Add a donation for Amina Otieno" in form_page.text
    assert client.get("/donations?participant_id=nobody").status_code == 404

    for item, quantity in (("Snacks", "3"), ("Water bottles", "24")):
        response = client.post(
            "/donations",
            data={"participant_id": participant_id, "item_name": item, "quantity": quantity, "description": ""},
            follow_redirects=False,
        )
        assert response.status_code == 303

    page = client.get("/donations").text
    assert page.index("Water bottles") < page.index("Snacks")
    assert "by Amina Otieno" in page


def test_donation_errors_are_shown(client):
    client.post("/register", data=registration_data(), follow_redirects=False)
    participant_id = _participants(client)[0]["id"]

    bad_item = client.post("/donations", data={"participant_id": participant_id, "item_name": "W", "quantity": "500"})
    assert "Item name must be at least 2 characters" in bad_item.text
    assert "Maximum 100 items allowed" in bad_item.text

    no_participant = client.post("/donations", data={"participant_id": "ghost", "item_name": "Snacks", "quantity": "1"})
    assert "Please choose a participant from the list" in no_participant.text


def test_live_donations_push_after_insert(client):
    client.post("/register", data=registration_data(full_name="Amina Otieno"), follow_redirects=False)
    participant_id = _participants(client)[0]["id"]

    with client.websocket_connect("/live/donations") as ws:
        first = ws.receive_json()
        assert first["lists"] == ["donations", "participants"]
        assert "No donations yet" in first["html"]

        client.post(
            "/donations",
            data={"participant_id": participant_id, "item_name": "Water bottles", "quantity": "24"},
            follow_redirects=False,
        )
        update = ws.receive_json()

    assert update["lists"] == ["donations"]
    assert "Water bottles" in update["html"]
