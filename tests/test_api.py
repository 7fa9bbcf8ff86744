"""HTTP surface: status codes, error envelope, headers."""
import json

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import BASE_URL, b64, build_core_elf, make_engine, release_event, sign, widget_manifest
from firmware_backend.models.project import Project
from firmware_backend.server import create_app
from firmware_backend.services import release_service
from firmware_backend.services.queue_service import WorkQueue
from firmware_backend.services.storage_service import store_firmware

PREFIX = "firmware/widget-fw/WIDGET"


async def _seed(db, store, versions=("1.1.0", "1.2.0"), elf=True):
    project = await release_service.upsert_project(db, "acme/widget-fw", "WIDGET")
    for version in versions:
        await release_service.insert_release(db, project.id, "WIDGET", version)
        manifest = widget_manifest("WIDGET_bootloader.bin", "WIDGET_app.bin")
        await store_firmware(store, "widget-fw", "WIDGET", version, "manifest.json", json.dumps(manifest).encode(), "application/json")
        await store_firmware(store, "widget-fw", "WIDGET", version, "WIDGET_app.bin", b"\xe9app-" + version.encode())
        if elf:
            await store_firmware(store, "widget-fw", "WIDGET", version, "WIDGET.elf", b"\x7fELF")
    return project


def _ota_headers(version, project="widget-fw", variant="WIDGET"):
    headers = {"x-firmware-project": project, "x-firmware-version": version}
    if variant:
        headers["x-firmware-variant"] = variant
    return headers


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


# ---------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------

async def _post_webhook(client, body: bytes, signature=None, event="release"):
    headers = {"x-github-event": event, "content-type": "application/json"}
    if signature is not False:
        headers["x-hub-signature-256"] = signature or sign(body)
    return await client.post("/webhook/github", content=body, headers=headers)


async def test_webhook_rejects_bad_signature(client, queue):
    body = json.dumps(release_event(assets=[(1, "WIDGET_manifest.json")])).encode()

    resp = await _post_webhook(client, body, signature=sign(body, secret="wrong"))
    assert resp.status_code == 401
    assert resp.json()["error"] is True

    resp = await _post_webhook(client, body, signature=False)
    assert resp.status_code == 401
    assert len(queue) == 0


async def test_webhook_ping(client):
    resp = await _post_webhook(client, b'{"zen": "Keep it logically awesome."}', event="ping")
    assert resp.status_code == 200
    assert resp.json()["message"] == "pong"


async def test_webhook_invalid_json(client):
    resp = await _post_webhook(client, b"{not json")
    assert resp.status_code == 400
    assert resp.json() == {"error": True, "message": "Invalid JSON payload"}


async def test_webhook_non_semver_tag(client):
    body = json.dumps(release_event(tag="latest", assets=[(1, "WIDGET_manifest.json")])).encode()
    resp = await _post_webhook(client, body)
    assert resp.status_code == 400


async def test_webhook_queues_release(client, queue):
    body = json.dumps(release_event(assets=[(1, "WIDGET_manifest.json"), (2, "WIDGET_app.bin")])).encode()

    resp = await _post_webhook(client, body)

    assert resp.status_code == 200
    data = resp.json()
    assert data["message"] == "Release queued"
    assert data["queued"] == ["WIDGET"]
    assert len(queue) == 1


async def test_webhook_ignored_action(client, queue):
    body = json.dumps(release_event(action="deleted", assets=[(1, "WIDGET_manifest.json")])).encode()
    resp = await _post_webhook(client, body)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Ignored action: deleted"
    assert len(queue) == 0


# ---------------------------------------------------------------------
# OTA
# ---------------------------------------------------------------------

async def test_ota_update_available(client, db, store):
    await _seed(db, store)
    resp = await client.get("/", headers=_ota_headers("1.1.0"))
    assert resp.status_code == 200
    assert resp.json() == {
        "error": False,
        "update_available": True,
        "ota_url": f"{BASE_URL}/{PREFIX}/1.2.0/WIDGET_app.bin",
    }


async def test_ota_up_to_date(client, db, store):
    await _seed(db, store)
    resp = await client.get("/", headers=_ota_headers("1.2.0"))
    assert resp.json() == {"error": False, "update_available": False}


async def test_ota_missing_headers(client):
    resp = await client.get("/", headers={"x-firmware-version": "1.0.0"})
    assert resp.status_code == 400
    assert "x-firmware-project" in resp.json()["message"]

    resp = await client.get("/", headers={"x-firmware-project": "widget-fw"})
    assert resp.status_code == 400
    assert "x-firmware-version" in resp.json()["message"]


async def test_ota_unknown_project(client):
    resp = await client.get("/", headers=_ota_headers("1.0.0", project="ghost"))
    assert resp.status_code == 404
    assert resp.json() == {"error": True, "message": "Project ghost not found"}


async def test_ota_invalid_version(client, db, store):
    await _seed(db, store)
    resp = await client.get("/", headers=_ota_headers("one.two"))
    assert resp.status_code == 400


# ---------------------------------------------------------------------
# Coredump
# ---------------------------------------------------------------------

def _core(pc=0x400D1234):
    registers = [0] * 32
    registers[0] = pc
    registers[19] = 29
    return b64(build_core_elf(registers))


async def test_coredump_decoded_with_elf_link(client, db, store):
    await _seed(db, store)
    resp = await client.post("/coredump", json={
        "project": "widget-fw", "variant": "WIDGET", "version": "1.2.0", "coredump": _core(),
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["crash_info"]["pc"] == "0x400d1234"
    assert data["crash_info"]["exception_cause"] == "StoreProhibitedCause"
    assert data["backtrace"] == ["0x400d1234"]
    assert data["elf_download_url"] == f"{BASE_URL}/{PREFIX}/1.2.0/WIDGET.elf"


async def test_coredump_without_elf(client, db, store):
    await _seed(db, store, elf=False)
    resp = await client.post("/coredump", json={
        "project": "widget-fw", "variant": "WIDGET", "version": "1.2.0", "coredump": _core(),
    })
    assert resp.json()["success"] is True
    assert "elf_download_url" not in resp.json()


async def test_coredump_undecodable(client, db, store):
    await _seed(db, store)
    resp = await client.post("/coredump", json={
        "project": "widget-fw", "variant": "WIDGET", "version": "1.2.0", "coredump": b64(b"garbage"),
    })
    assert resp.status_code == 200
    assert resp.json()["success"] is False
    assert resp.json()["error"]


async def test_coredump_unknown_project(client):
    resp = await client.post("/coredump", json={
        "project": "ghost", "variant": "WIDGET", "version": "1.2.0", "coredump": _core(),
    })
    assert resp.status_code == 404


async def test_coredump_missing_field(client):
    resp = await client.post("/coredump", json={"project": "widget-fw"})
    assert resp.status_code == 400
    assert resp.json() == {"error": True, "message": "Invalid request"}


# ---------------------------------------------------------------------
# Projects and downloads
# ---------------------------------------------------------------------

async def test_projects_listing(client, db, store):
    await _seed(db, store)

    resp = await client.get("/projects")
    assert resp.json() == [{"slug": "widget-fw", "repository_slug": "acme/widget-fw", "name": "WIDGET"}]

    resp = await client.get("/projects/widget-fw")
    assert resp.json()["variants"] == [{"variant": "WIDGET", "latest_version": "1.2.0", "release_count": 2}]

    resp = await client.get("/projects/widget-fw/WIDGET/versions")
    assert [v["version"] for v in resp.json()["versions"]] == ["1.2.0", "1.1.0"]


async def test_project_variant_manifest_is_rewritten(client, db, store):
    await _seed(db, store)
    resp = await client.get("/projects/widget-fw/WIDGET")
    assert resp.status_code == 200
    paths = [p["path"] for p in resp.json()["builds"][0]["parts"]]
    assert paths == [
        f"{BASE_URL}/{PREFIX}/1.2.0/WIDGET_bootloader.bin",
        f"{BASE_URL}/{PREFIX}/1.2.0/WIDGET_app.bin",
    ]

    # stored copy keeps relative paths
    stored = json.loads((store.root / PREFIX / "1.2.0" / "manifest.json").read_text())
    assert stored["builds"][0]["parts"][1]["path"] == "WIDGET_app.bin"


@pytest.mark.parametrize("path", ["/projects/ghost", "/projects/widget-fw/GADGET", "/projects/widget-fw/GADGET/versions"])
async def test_projects_not_found(client, db, store, path):
    await _seed(db, store)
    resp = await client.get(path)
    assert resp.status_code == 404
    assert resp.json()["error"] is True


async def test_firmware_download(client, db, store):
    await _seed(db, store)
    resp = await client.get(f"/{PREFIX}/1.2.0/WIDGET_app.bin")
    assert resp.status_code == 200
    assert resp.content == b"\xe9app-1.2.0"
    assert resp.headers["content-type"] == "application/octet-stream"
    assert "immutable" in resp.headers["cache-control"]
    assert resp.headers["content-disposition"] == 'attachment; filename="WIDGET_app.bin"'


async def test_firmware_download_missing(client, db, store):
    await _seed(db, store)
    resp = await client.get(f"/{PREFIX}/9.9.9/WIDGET_app.bin")
    assert resp.status_code == 404


async def test_firmware_download_rejects_unsafe_names(client):
    resp = await client.get("/firmware/widget-fw/WIDGET/1.2.0/bad%20name.bin")
    assert resp.status_code == 400


async def test_firmware_download_with_build_metadata_version(client, db, store):
    await _seed(db, store, versions=("1.2.3+7",), elf=False)
    resp = await client.get(f"/{PREFIX}/1.2.3+7/WIDGET_app.bin")
    assert resp.status_code == 200
    assert resp.content == b"\xe9app-1.2.3+7"


# ---------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------

async def test_app_keeps_injected_empty_queue_and_store(session_factory, store):
    queue = WorkQueue()
    app = create_app(session_factory=session_factory, store=store, queue=queue)
    assert app.state.queue is queue
    assert app.state.store is store


async def test_default_queue_is_journaled(session_factory, store):
    app = create_app(session_factory=session_factory, store=store)
    assert app.state.queue.journal is not None
    assert app.state.queue.journal.session_factory is session_factory


async def test_startup_creates_tables_on_the_session_factory_engine(tmp_path, store):
    engine = make_engine(tmp_path / "fresh.db")
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    app = create_app(session_factory=factory, store=store, queue=WorkQueue(retry_delay=0))

    for handler in app.router.on_startup:
        await handler()
    try:
        async with factory() as db:
            assert (await db.execute(select(Project))).scalars().all() == []
    finally:
        for handler in app.router.on_shutdown:
            await handler()
