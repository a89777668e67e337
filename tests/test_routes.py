import io
import json
from datetime import datetime, timedelta, timezone
from PIL import Image

from botocore.exceptions import ClientError

from image_server import main
from image_server.main import app
from image_server.image_service.caching import http_date

from conftest import make_image_bytes


def upload(test_client, filename="photo.jpg", data=None, metadata=None, namespace="testdb"):
    data = data if data is not None else make_image_bytes((320, 240))
    form = {}
    if metadata is not None:
        form["metadata"] = json.dumps(metadata)
    return test_client.post(
        f"/{namespace}",
        data=form,
        files={"file": (filename, data, "image/jpeg")},
    )


# ------------------------------
# / [GET]
# ------------------------------

def test_welcome(test_client):
    resp = test_client.get("/")
    assert resp.status_code == 200
    assert "Image Server." in resp.text
    assert resp.headers["content-type"].startswith("text/html")


# ------------------------------
# /{namespace} [POST]
# ------------------------------

def test_upload_image_success(test_client):
    resp = upload(test_client, metadata={"license": "MIT"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["filename"] == "photo.jpg"
    assert body["namespace"] == "testdb"
    assert body["content_type"] == "image/jpeg"
    assert body["metadata"] == {"license": "MIT"}


def test_upload_with_explicit_filename(test_client):
    resp = test_client.post(
        "/testdb",
        data={"filename": "renamed.png"},
        files={"file": ("local.png", make_image_bytes((10, 10), "PNG"), "image/png")},
    )
    assert resp.status_code == 201
    assert resp.json()["filename"] == "renamed.png"
    assert resp.json()["content_type"] == "image/png"


def test_upload_invalid_file(test_client):
    resp = upload(test_client, data=b"notimg")
    assert resp.status_code == 400


def test_upload_invalid_metadata(test_client):
    resp = test_client.post(
        "/testdb",
        data={"metadata": "[1, 2]"},
        files={"file": ("photo.jpg", make_image_bytes(), "image/jpeg")},
    )
    assert resp.status_code == 400


def test_upload_duplicate_filename(test_client):
    assert upload(test_client).status_code == 201
    assert upload(test_client).status_code == 409
    assert upload(test_client, namespace="otherdb").status_code == 201


# ------------------------------
# /{namespace}/{identifier} [GET]
# ------------------------------

def test_not_found(test_client):
    resp = test_client.get("/invalid_testdatabase/notfound.jpg")
    assert resp.status_code == 404
    assert resp.content == b""


def test_missing_filename(test_client):
    for path in ("/testdb/", "/testdb"):
        resp = test_client.get(path, follow_redirects=False)
        assert resp.status_code == 404
        assert resp.content == b""


def test_original_without_size(test_client):
    data = make_image_bytes((320, 240))
    upload(test_client, data=data)

    resp = test_client.get("/testdb/photo.jpg")
    assert resp.status_code == 200
    assert resp.content == data
    assert resp.headers["etag"]
    assert resp.headers["content-type"] == "image/jpeg"
    assert resp.headers["cache-control"] == "max-age=315360000"
    assert resp.headers["last-modified"].endswith("GMT")
    assert resp.headers["expires"]


def test_original_by_id(test_client):
    data = make_image_bytes((320, 240))
    image_id = upload(test_client, data=data).json()["image_id"]

    resp = test_client.get(f"/testdb/{image_id}")
    assert resp.status_code == 200
    assert resp.content == data


def test_unknown_size_delivers_original(test_client):
    data = make_image_bytes((320, 240))
    upload(test_client, data=data)
    resp = test_client.get("/testdb/photo.jpg", params={"size": "ruski"})
    assert resp.status_code == 200
    assert resp.content == data


def test_unknown_size_and_missing_image(test_client):
    resp = test_client.get("/testdb/nothing.jpg", params={"size": "unknownname"})
    assert resp.status_code == 404


def test_resized_image_with_size(test_client):
    upload(test_client)
    resp = test_client.get("/testdb/photo.jpg", params={"size": "45x35"})
    assert resp.status_code == 200
    assert resp.headers["etag"]
    assert Image.open(io.BytesIO(resp.content)).size == (45, 35)


def test_crop_then_not_modified(test_client):
    upload(test_client)

    first = test_client.get("/testdb/photo.jpg", params={"size": "50x50"})
    assert first.status_code == 200
    assert Image.open(io.BytesIO(first.content)).size == (50, 50)
    etag = first.headers["etag"]

    second = test_client.get("/testdb/photo.jpg", params={"size": "50x50"})
    assert second.status_code == 200
    assert second.headers["etag"] == etag
    assert second.content == first.content

    cached = test_client.get(
        "/testdb/photo.jpg",
        params={"size": "50x50"},
        headers={"If-None-Match": etag},
    )
    assert cached.status_code == 304
    assert len(cached.content) == 0


def test_conditional_request_with_future_date(test_client):
    upload(test_client)
    etag = test_client.get("/testdb/photo.jpg").headers["etag"]

    resp = test_client.get(
        "/testdb/photo.jpg",
        headers={
            "If-None-Match": etag,
            "If-Modified-Since": http_date(datetime.now(timezone.utc) + timedelta(days=1)),
        },
    )
    assert resp.status_code == 304
    assert resp.content == b""


def test_no_cache_forces_delivery(test_client):
    upload(test_client)
    etag = test_client.get("/testdb/photo.jpg").headers["etag"]

    resp = test_client.get(
        "/testdb/photo.jpg",
        headers={"If-None-Match": etag, "Cache-Control": "no-cache"},
    )
    assert resp.status_code == 200
    assert resp.content


def test_derivative_keeps_original_metadata(test_client, app_store):
    upload(test_client, metadata={"copyright": "ACME Fantasia", "license": "MIT"})
    resp = test_client.get("/testdb/photo.jpg", params={"size": "45x35"})
    assert resp.status_code == 200

    entry = app.state.resolver.size_config.lookup("45x35")
    child = app_store.find_image("testdb", "photo.jpg", entry)
    assert child.fingerprint == resp.headers["etag"]
    assert child.metadata["copyright"] == "ACME Fantasia"
    assert child.metadata["license"] == "MIT"
    assert child.metadata["size"] == "45x35"
    assert child.metadata["resizeType"] == "resize"
    assert child.metadata["originalFilename"] == "photo.jpg"


def test_undecodable_original_with_size(test_client, app_store):
    app_store.create_image("testdb", "broken.jpg", b"notanimage", "image/jpeg")
    resp = test_client.get("/testdb/broken.jpg", params={"size": "50x50"})
    assert resp.status_code == 404


def test_missing_configuration(test_client):
    resolver = app.state.resolver
    app.state.resolver = None
    try:
        resp = test_client.get("/testdb/photo.jpg")
    finally:
        app.state.resolver = resolver
    assert resp.status_code == 500


def test_store_failure(test_client, app_store, mocker):
    error = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "Scan")
    mocker.patch.object(app_store.db, "find_first", side_effect=error)
    resp = test_client.get("/testdb/photo.jpg")
    assert resp.status_code == 500


def test_run_disables_server_date_header(mocker):
    run = mocker.patch("image_server.main.uvicorn.run")
    main.run()
    run.assert_called_once()
    assert run.call_args.kwargs["date_header"] is False
