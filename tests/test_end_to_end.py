"""Publish a release, drain the ingestion queue, then ask for an update like a device would."""
import json

from sqlalchemy import select

from conftest import BASE_URL, download_url, release_event, sign, widget_manifest
from firmware_backend.models.release import Release
from firmware_backend.services.sync_service import process_ingestion_task

REPO = "acme/widget-fw"


async def test_release_to_device_update(client, db, session_factory, store, queue, github):
    github.add(download_url(REPO, "v1.2.0", "WIDGET_manifest.json"), widget_manifest("WIDGET_bootloader.bin", "WIDGET_app.bin"))
    github.add(download_url(REPO, "v1.2.0", "WIDGET_bootloader.bin"), b"boot")
    github.add(download_url(REPO, "v1.2.0", "WIDGET_app.bin"), b"\xe9widget-1.2.0")

    body = json.dumps(release_event(REPO, "v1.2.0", [
        (100, "WIDGET_manifest.json"), (101, "WIDGET_bootloader.bin"), (102, "WIDGET_app.bin"),
    ])).encode()
    resp = await client.post(
        "/webhook/github",
        content=body,
        headers={"x-github-event": "release", "x-hub-signature-256": sign(body)},
    )
    assert resp.status_code == 200
    assert resp.json()["queued"] == ["WIDGET"]

    async with github.client() as http:
        async def handler(task):
            return await process_ingestion_task(task, session_factory, store, client=http)

        await queue.drain(handler)
    assert queue.dead_letters == []

    prefix = store.root / "firmware" / "widget-fw" / "WIDGET" / "1.2.0"
    assert (prefix / "manifest.json").is_file()
    assert (prefix / "WIDGET_app.bin").read_bytes() == b"\xe9widget-1.2.0"

    release = (await db.execute(select(Release))).scalar_one()
    assert (release.major, release.minor, release.patch) == (1, 2, 0)

    resp = await client.get("/", headers={
        "x-firmware-project": "widget-fw",
        "x-firmware-version": "1.0.0",
        "x-firmware-variant": "WIDGET",
    })
    assert resp.json() == {
        "error": False,
        "update_available": True,
        "ota_url": f"{BASE_URL}/firmware/widget-fw/WIDGET/1.2.0/WIDGET_app.bin",
    }

    resp = await client.get("/firmware/widget-fw/WIDGET/1.2.0/WIDGET_app.bin")
    assert resp.content == b"\xe9widget-1.2.0"

    # redelivered webhook: the manifest is already in the ledger
    resp = await client.post(
        "/webhook/github",
        content=body,
        headers={"x-github-event": "release", "x-hub-signature-256": sign(body)},
    )
    assert resp.json()["skipped"] == 1
    assert len(queue) == 0
