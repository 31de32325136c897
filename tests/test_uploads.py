import io
import os


def _png(name="photo.png", size=16, mimetype="image/png"):
    return (io.BytesIO(b"\x89PNG" + b"0" * size), name, mimetype)


def test_upload_event_images(client, app, db, admin_headers, make_event):
    event = make_event()

    r = client.post(
        f"/api/events/{event['_id']}/images",
        data={"images": [_png("a.png"), _png("b.png")], "alt": "Kick-off"},
        headers=admin_headers,
        content_type="multipart/form-data",
    )

    assert r.status_code == 201
    images = r.get_json()["data"]["images"]
    assert len(images) == 2
    assert all(img["url"].startswith("/uploads/events/event_image-") for img in images)
    assert all(img["alt"] == "Kick-off" for img in images)

    stored = images[0]["url"][len("/uploads/"):]
    assert os.path.exists(os.path.join(app.config["UPLOAD_DIR"], stored))
    assert client.get(images[0]["url"]).status_code == 200


def test_upload_venue_seat_map(client, admin_headers, make_venue):
    venue = make_venue()

    r = client.post(
        f"/api/venues/{venue['_id']}/images",
        data={"seat_map": _png("map.png")},
        headers=admin_headers,
        content_type="multipart/form-data",
    )

    assert r.status_code == 201
    assert r.get_json()["data"]["seat_map"]["image_url"].startswith("/uploads/seatmaps/seat_map-")


def test_upload_rejections(client, app, admin_headers, make_event):
    url = f"/api/events/{make_event()['_id']}/images"

    def post(data):
        return client.post(url, data=data, headers=admin_headers, content_type="multipart/form-data")

    r = post({"images": (io.BytesIO(b"hello"), "notes.txt", "text/plain")})
    assert r.status_code == 400
    assert r.get_json()["message"] == "Only image files are allowed!"

    r = post({})
    assert r.get_json()["message"] == "No image files uploaded."

    r = post({"avatar": _png()})
    assert r.get_json()["message"] == "Unexpected upload field: avatar"

    r = post({"images": [_png(f"{i}.png") for i in range(11)]})
    assert r.status_code == 400

    app.config["UPLOAD_MAX_FILE_BYTES"] = 8
    r = post({"images": _png(size=64)})
    assert r.status_code == 400
    assert r.get_json()["message"] == "File too large (max 5 MB)."


def test_upload_requires_admin(client, make_user, make_event):
    _, headers = make_user()
    r = client.post(f"/api/events/{make_event()['_id']}/images", data={"images": _png()},
                    headers=headers, content_type="multipart/form-data")
    assert r.status_code == 403
