# tests/test_upload_api.py
from __future__ import annotations

import io

from studio_app.services import storage_ledger as ledger
from studio_app.services.object_store import iter_objects


def _form(data: bytes, filename="a.png", mimetype="image/png", **fields):
    form = {"file": (io.BytesIO(data), filename, mimetype)}
    form.update(fields)
    return form


def _post(client, form):
    return client.post("/api/upload", data=form, content_type="multipart/form-data")


def test_upload_requires_admin(client, logged_client_user, make_png):
    assert _post(client, _form(make_png())).status_code == 403


def test_upload_requires_login(app, make_png):
    r = _post(app.test_client(), _form(make_png()))
    assert r.status_code == 401


def test_upload_stores_and_counts(logged_client_admin, seed_ledger, store, make_png):
    seed_ledger()
    r = _post(logged_client_admin, _form(make_png(120), folder="events/wedding"))
    assert r.status_code == 200
    body = r.get_json()
    assert body["path"].startswith("events/wedding/")
    assert body["path"].endswith(".png")
    assert body["url"] == f"/media/{body['path']}"

    assert store.get_metadata(body["path"]).size_bytes == 120
    snap = ledger.peek_snapshot()
    assert (snap.total_bytes, snap.total_files, snap.upload_ops_today) == (120, 1, 1)


def test_upload_default_folder(logged_client_admin, seed_ledger, make_png):
    seed_ledger()
    r = _post(logged_client_admin, _form(make_png()))
    assert r.get_json()["path"].startswith("uploads/")


def test_upload_without_file(logged_client_admin):
    r = logged_client_admin.post("/api/upload", data={}, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.get_json() == {"error": "No file provided or Invalid file"}


def test_upload_rejects_non_images(logged_client_admin, seed_ledger, store):
    seed_ledger()
    r = _post(logged_client_admin, _form(b"%PDF-1.7 ...", "doc.pdf", "application/pdf"))
    assert r.status_code == 400
    assert "not an image" in r.get_json()["error"]
    assert list(iter_objects(store)) == []


def test_upload_rejects_mismatched_signature(logged_client_admin, seed_ledger):
    seed_ledger()
    r = _post(logged_client_admin, _form(b"GIF89a" + b"\x00" * 20, "fake.png", "image/png"))
    assert r.status_code == 400
    assert "PNG" in r.get_json()["error"]


def test_upload_rejects_oversize(app, logged_client_admin, seed_ledger, make_png):
    app.config["MAX_UPLOAD_BYTES"] = 2 * 1024 * 1024
    seed_ledger()
    r = _post(logged_client_admin, _form(make_png(2 * 1024 * 1024 + 1)))
    assert r.status_code == 400
    assert r.get_json()["error"] == "File size exceeds 2MB limit"
    assert ledger.peek_snapshot().total_files == 0


def test_upload_storage_limit_is_507(app, logged_client_admin, seed_ledger, store, make_png):
    app.config["STORAGE_LIMIT_BYTES"] = 100
    seed_ledger(total_bytes=90, total_files=1)

    r = _post(logged_client_admin, _form(make_png(20)))
    assert r.status_code == 507
    body = r.get_json()
    assert body["code"] == "storage-limit"
    assert "Delete existing files" in body["error"]
    assert list(iter_objects(store)) == []


def test_upload_daily_ops_limit_is_429(app, logged_client_admin, seed_ledger, make_png):
    app.config["UPLOAD_OPS_DAILY_LIMIT"] = 1
    seed_ledger()

    assert _post(logged_client_admin, _form(make_png())).status_code == 200
    r = _post(logged_client_admin, _form(make_png()))
    assert r.status_code == 429
    assert r.get_json()["code"] == "upload-ops-limit"
    assert ledger.peek_snapshot().upload_ops_today == 1


def test_upload_invalid_folder_is_400(logged_client_admin, seed_ledger, store, make_png):
    seed_ledger()
    r = _post(logged_client_admin, _form(make_png(), folder="../outside"))
    assert r.status_code == 400
    assert list(iter_objects(store)) == []


def test_replace_existing_keeps_a_single_hero(logged_client_admin, seed_ledger, store, make_png):
    seed_ledger()
    first = _post(logged_client_admin, _form(make_png(100), "one.png", folder="hero", replaceExisting="true"))
    assert first.get_json()["path"] == "hero/hero.png"

    second = _post(logged_client_admin, _form(make_png(40), "two.png", folder="hero", replaceExisting="true"))
    assert second.status_code == 200
    assert second.get_json()["path"] == "hero/hero.png"

    assert [(i.path, i.size_bytes) for i in iter_objects(store, "hero/")] == [("hero/hero.png", 40)]
    snap = ledger.peek_snapshot()
    assert (snap.total_bytes, snap.total_files, snap.upload_ops_today) == (40, 1, 2)


def test_replace_existing_defaults_to_jpg(logged_client_admin, seed_ledger, make_png):
    seed_ledger()
    r = _post(logged_client_admin, _form(make_png(), "noext", folder="banner", replaceExisting="true"))
    assert r.get_json()["path"] == "banner/hero.jpg"


def test_uploaded_file_is_served(logged_client_admin, seed_ledger, make_png):
    seed_ledger()
    data = make_png(77)
    url = _post(logged_client_admin, _form(data)).get_json()["url"]

    r = logged_client_admin.get(url)
    assert r.status_code == 200
    assert r.data == data


def test_media_missing_is_404(client):
    assert client.get("/media/nothing/here.jpg").status_code == 404


# --------------------------------------------------------------------
# batch upload
# --------------------------------------------------------------------
def _batch(client, files, folder="galleries/spring/images"):
    form = {"files": [(io.BytesIO(data), name, "image/png") for data, name in files], "folder": folder}
    return client.post("/api/upload/batch", data=form, content_type="multipart/form-data")


def test_batch_upload_stores_every_file(logged_client_admin, seed_ledger, store, make_png):
    seed_ledger()
    r = _batch(logged_client_admin, [(make_png(30), "a.png"), (make_png(40), "b.png")])
    assert r.status_code == 200
    files = r.get_json()["files"]
    assert len(files) == 2
    assert all(f["path"].startswith("galleries/spring/images/") for f in files)

    assert len(list(iter_objects(store, "galleries/"))) == 2
    snap = ledger.peek_snapshot()
    assert (snap.total_files, snap.total_bytes, snap.upload_ops_today) == (2, 70, 2)


def test_batch_upload_over_daily_ops_is_429(app, logged_client_admin, seed_ledger, store, make_png):
    app.config["UPLOAD_OPS_DAILY_LIMIT"] = 2
    seed_ledger()
    r = _batch(logged_client_admin, [(make_png(), f"{i}.png") for i in range(3)])
    assert r.status_code == 429
    assert r.get_json()["code"] == "upload-ops-limit"
    assert list(iter_objects(store)) == []


def test_batch_upload_rejects_invalid_member(logged_client_admin, seed_ledger, store, make_png):
    seed_ledger()
    r = _batch(logged_client_admin, [(make_png(), "ok.png"), (b"GIF89a" + b"\x00" * 10, "bad.png")])
    assert r.status_code == 400
    assert list(iter_objects(store)) == []


def test_batch_upload_without_files(logged_client_admin):
    r = logged_client_admin.post("/api/upload/batch", data={"folder": "x"}, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.get_json() == {"error": "No files provided"}


def test_batch_upload_requires_admin(logged_client_user, make_png):
    assert _batch(logged_client_user, [(make_png(), "a.png")]).status_code == 403
