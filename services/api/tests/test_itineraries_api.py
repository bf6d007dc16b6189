from viberoute.models import Itinerary

PREFS = {"terrain": "paved", "road_type": "twisty", "duration_h": 10, "distance_km": 120}


def generate(client, note_id, headers, request_id="req-api-0001", preferences=PREFS):
    payload = {"request_id": request_id}
    if preferences is not None:
        payload["preferences"] = preferences
    return client.post(f"/api/notes/{note_id}/itineraries", json=payload, headers=headers)


def add_itinerary(db_session, note, status, request_id="req-direct-1", version=1):
    itinerary = Itinerary(
        note_id=note.id,
        user_id=note.user_id,
        version=version,
        status=status,
        request_id=request_id,
    )
    db_session.add(itinerary)
    db_session.commit()
    db_session.refresh(itinerary)
    return itinerary


def test_generate_then_poll(client, note, auth_headers):
    res = generate(client, note.id, auth_headers)
    assert res.status_code == 202, res.text
    body = res.json()
    assert body["note_id"] == note.id
    assert body["version"] == 1
    assert body["status"] == "running"
    itinerary_id = body["itinerary_id"]

    # background task has run by the time TestClient returns
    res = client.get(f"/api/itineraries/{itinerary_id}/status", headers=auth_headers)
    assert res.status_code == 200
    status = res.json()
    assert status["status"] == "completed"
    assert status["route_geojson"]["type"] == "FeatureCollection"
    assert status["error"] is None

    res = client.get(f"/api/itineraries/{itinerary_id}", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["title"] == "Tatra loop"
    assert res.json()["total_distance_km"] == 120


def test_replay_returns_same_itinerary(client, note, auth_headers):
    first = generate(client, note.id, auth_headers).json()
    second = generate(client, note.id, auth_headers)
    assert second.status_code == 202
    assert second.json()["itinerary_id"] == first["itinerary_id"]
    assert second.json()["status"] == "completed"


def test_generate_requires_user(client, note):
    res = generate(client, note.id, {})
    assert res.status_code == 401


def test_generate_unknown_note(client, auth_headers):
    res = generate(client, "missing-note", auth_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "note_not_found"


def test_generate_without_preferences(client, note, auth_headers):
    res = generate(client, note.id, auth_headers, preferences=None)
    assert res.status_code == 412
    assert res.json()["error"] == "preferences_missing"


def test_generate_invalid_payload(client, note, auth_headers):
    res = generate(client, note.id, auth_headers, request_id="short")
    assert res.status_code == 422

    res = generate(client, note.id, auth_headers, preferences={**PREFS, "distance_km": 0})
    assert res.status_code == 422


def test_generate_while_running(client, db_session, note, auth_headers):
    add_itinerary(db_session, note, "running", request_id="active-req-1")

    res = generate(client, note.id, auth_headers, request_id="req-api-0002")

    assert res.status_code == 409
    body = res.json()
    assert body["error"] == "generation_in_progress"
    assert body["details"]["active_request_id"] == "active-req-1"


def test_generate_rate_limited(client, note, auth_headers):
    for _ in range(10):
        assert generate(client, note.id, auth_headers).status_code == 202
    assert generate(client, note.id, auth_headers).status_code == 429


def test_list_itineraries(client, note, auth_headers):
    generate(client, note.id, auth_headers, request_id="req-api-0001")
    generate(client, note.id, auth_headers, request_id="req-api-0002")

    res = client.get(f"/api/notes/{note.id}/itineraries", headers=auth_headers)
    assert res.status_code == 200
    assert [i["version"] for i in res.json()["data"]] == [2, 1]

    res = client.get(f"/api/notes/{note.id}/itineraries?limit=1", headers=auth_headers)
    assert len(res.json()["data"]) == 1

    assert client.get(f"/api/notes/{note.id}/itineraries?limit=0", headers=auth_headers).status_code == 422
    assert client.get(f"/api/notes/{note.id}/itineraries?limit=101", headers=auth_headers).status_code == 422


def test_other_user_cannot_see_itinerary(client, note, auth_headers, other_user_id):
    itinerary_id = generate(client, note.id, auth_headers).json()["itinerary_id"]
    res = client.get(f"/api/itineraries/{itinerary_id}", headers={"X-User-Id": other_user_id})
    assert res.status_code == 404
    assert res.json()["error"] == "itinerary_not_found"


# --- Cancel / delete ---

def test_cancel(client, db_session, note, auth_headers):
    itinerary = add_itinerary(db_session, note, "running")

    res = client.post(f"/api/itineraries/{itinerary.id}/cancel", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "cancelled"
    assert res.json()["cancelled_at"]

    status = client.get(f"/api/itineraries/{itinerary.id}/status", headers=auth_headers).json()
    assert status["status"] == "cancelled"
    assert status["cancelled_at"]

    res = client.post(f"/api/itineraries/{itinerary.id}/cancel", headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "cannot_cancel"


def test_delete(client, db_session, note, auth_headers):
    running = add_itinerary(db_session, note, "running")
    res = client.delete(f"/api/itineraries/{running.id}", headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "cannot_delete"

    client.post(f"/api/itineraries/{running.id}/cancel", headers=auth_headers)
    res = client.delete(f"/api/itineraries/{running.id}", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["success"] is True

    assert client.get(f"/api/itineraries/{running.id}", headers=auth_headers).status_code == 404


# --- Downloads ---

def test_download_formats(client, note, auth_headers):
    itinerary_id = generate(client, note.id, auth_headers).json()["itinerary_id"]

    expected = {
        "gpx": "application/gpx+xml",
        "kml": "application/vnd.google-earth.kml+xml",
        "geojson": "application/geo+json",
    }
    for fmt, media_type in expected.items():
        res = client.get(
            f"/api/itineraries/{itinerary_id}/download",
            params={"format": fmt, "acknowledged": "true"},
            headers=auth_headers,
        )
        assert res.status_code == 200, res.text
        assert res.headers["content-type"].startswith(media_type)
        disposition = res.headers["content-disposition"]
        assert disposition == f'attachment; filename="route-tatra-loop-{itinerary_id[:8]}.{fmt}"'

    gpx = client.get(
        f"/api/itineraries/{itinerary_id}/download?acknowledged=true", headers=auth_headers
    )
    assert "<gpx" in gpx.text


def test_download_requires_acknowledgment(client, note, auth_headers):
    itinerary_id = generate(client, note.id, auth_headers).json()["itinerary_id"]
    res = client.get(f"/api/itineraries/{itinerary_id}/download?format=gpx", headers=auth_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "acknowledgment_required"


def test_download_not_completed(client, db_session, note, auth_headers):
    failed = add_itinerary(db_session, note, "failed")
    res = client.get(
        f"/api/itineraries/{failed.id}/download?format=kml&acknowledged=true", headers=auth_headers
    )
    assert res.status_code == 422
    assert res.json()["error"] == "itinerary_not_completed"


def test_download_unknown_format(client, note, auth_headers):
    itinerary_id = generate(client, note.id, auth_headers).json()["itinerary_id"]
    res = client.get(
        f"/api/itineraries/{itinerary_id}/download?format=tcx&acknowledged=true", headers=auth_headers
    )
    assert res.status_code == 422


# --- Links ---

def test_map_links(client, note, auth_headers):
    itinerary_id = generate(client, note.id, auth_headers).json()["itinerary_id"]

    res = client.get(f"/api/itineraries/{itinerary_id}/google?transport=bike", headers=auth_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["service"] == "google"
    assert body["transport"] == "bike"
    assert body["point_count"] == 13
    assert "travelmode=bicycling" in body["url"]

    res = client.get(f"/api/itineraries/{itinerary_id}/mapy", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["url"].startswith("https://mapy.com/fnc/v1/route?")


def test_mapy_refuses_long_route(client, note, auth_headers):
    prefs = {**PREFS, "distance_km": 400}
    itinerary_id = generate(client, note.id, auth_headers, preferences=prefs).json()["itinerary_id"]

    res = client.get(f"/api/itineraries/{itinerary_id}/mapy", headers=auth_headers)
    assert res.status_code == 422
    body = res.json()
    assert body["error"] == "too_many_points"
    assert body["details"] == {"service": "Mapy.com", "point_count": 17, "limit": 15}

    assert client.get(f"/api/itineraries/{itinerary_id}/google", headers=auth_headers).status_code == 200


def test_ready(client):
    res = client.get("/api/ready")
    assert res.status_code == 200
    assert res.json() == {"ok": True, "db_ok": True}
