"""
Shared fixtures.

Environment is set before any firmware_backend import so config picks it up.
"""
import base64
import hashlib
import hmac
import json
import os
import struct

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

os.environ["GITHUB_WEBHOOK_SECRET"] = "test-secret"
os.environ["PUBLIC_BASE_URL"] = "https://ota.example.com"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GITHUB_APP_ID"] = ""
os.environ["GITHUB_APP_PRIVATE_KEY"] = ""

from firmware_backend.core.database import get_db, init_models  # noqa: E402
from firmware_backend.server import create_app  # noqa: E402
from firmware_backend.services.queue_service import WorkQueue  # noqa: E402
from firmware_backend.services.storage_service import LocalBlobStore  # noqa: E402

BASE_URL = "https://ota.example.com"


def make_engine(path):
    # NullPool: no connection outlives the event loop that opened it
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(tmp_path / "test.db")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def queue():
    return WorkQueue(retry_delay=0)


@pytest.fixture
async def client(session_factory, store, queue):
    """HTTP client against the app; lifecycle hooks do not run, so the queue stays passive."""
    app = create_app(session_factory=session_factory, store=store, queue=queue, public_base_url=BASE_URL)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        yield c


# ---------------------------------------------------------------------
# Fake GitHub
# ---------------------------------------------------------------------

class FakeGitHub:
    """URL -> bytes map served through httpx.MockTransport, with a request log."""

    def __init__(self):
        self.files = {}
        self.failing = set()
        self.requests = []

    def add(self, url, data):
        self.files[url] = data if isinstance(data, bytes) else json.dumps(data).encode()

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(request)
        if url in self.failing:
            return httpx.Response(500, text="boom")
        if url not in self.files:
            return httpx.Response(404, text="Not Found")
        return httpx.Response(200, content=self.files[url])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), follow_redirects=True)

    def fetched(self, url):
        return sum(1 for r in self.requests if str(r.url) == url)


@pytest.fixture
def github():
    return FakeGitHub()


def download_url(repo, tag, name):
    return f"https://github.com/{repo}/releases/download/{tag}/{name}"


def api_url(repo, asset_id):
    return f"https://api.github.com/repos/{repo}/releases/assets/{asset_id}"


def release_event(repo="acme/widget-fw", tag="v1.2.0", assets=(), action="published", name=None, installation_id=None):
    """GitHub "release" webhook body; assets are (id, filename) pairs."""
    event = {
        "action": action,
        "release": {
            "tag_name": tag,
            "name": name,
            "assets": [
                {
                    "id": asset_id,
                    "name": filename,
                    "url": api_url(repo, asset_id),
                    "browser_download_url": download_url(repo, tag, filename),
                    "content_type": "application/json" if filename.endswith(".json") else "application/octet-stream",
                }
                for asset_id, filename in assets
            ],
        },
        "repository": {"full_name": repo},
    }
    if installation_id is not None:
        event["installation"] = {"id": installation_id}
    return event


def widget_manifest(*paths, chip="esp32s3"):
    return {
        "name": "Widget",
        "version": "1.2.0",
        "new_install_prompt_erase": True,
        "builds": [
            {
                "chipFamily": chip,
                "parts": [{"path": p, "offset": 0x10000 * i} for i, p in enumerate(paths)],
            }
        ],
    }


# ---------------------------------------------------------------------
# Coredump builder
# ---------------------------------------------------------------------

def build_core_elf(registers, endian="<", elf_class=1, note_type=1, extra_notes=()):
    """
    Minimal ELF32 core: header, one PT_NOTE program header, then notes.
    `registers` are the u32 words of the prstatus descriptor.
    """
    def note(ntype, name, desc):
        name_b = name + b"\x00"
        pad = lambda b: b + b"\x00" * ((4 - len(b) % 4) % 4)
        return struct.pack(endian + "III", len(name_b), len(desc), ntype) + pad(name_b) + pad(desc)

    notes = b"".join(note(t, n, d) for t, n, d in extra_notes)
    notes += note(note_type, b"CORE", struct.pack(endian + f"{len(registers)}I", *registers))

    phoff = 52
    note_offset = phoff + 32
    ident = b"\x7fELF" + bytes([elf_class, 1 if endian == "<" else 2, 1]) + b"\x00" * 9
    header = ident + struct.pack(
        endian + "HHIIIIIHHHHHH",
        4,      # e_type ET_CORE
        94,     # e_machine EM_XTENSA
        1,      # e_version
        0,      # e_entry
        phoff,  # e_phoff
        0,      # e_shoff
        0,      # e_flags
        52,     # e_ehsize
        32,     # e_phentsize
        1,      # e_phnum
        0, 0, 0,
    )
    phdr = struct.pack(endian + "IIIIIIII", 4, note_offset, 0, 0, len(notes), len(notes), 0, 4)
    return header + phdr + notes


def sign(body: bytes, secret: str = "test-secret") -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
