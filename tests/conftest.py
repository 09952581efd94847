import io
import os
import random
from datetime import datetime, timedelta

# Dummy env zodat boto3 en get_settings() niet zeuren
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("STORAGE_BACKEND", "local")

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.pool import StaticPool

from assetflow import models  # noqa: F401  (registreert tabellen op Base)
from assetflow.collaborators import Identity, InMemoryCatalog
from assetflow.config import Settings
from assetflow.db import Base, make_engine, make_session_factory
from assetflow.errors import ScanBackendError
from assetflow.main import create_app
from assetflow.pipeline import AssetPipeline
from assetflow.scanning import CLEAN, INFECTED, ScanBackend, ScanTarget, Verdict
from assetflow.storage.local import LocalBlobStore


class FakeClock:
    """Handmatig door te schuiven klok (naive UTC)."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class FakeScanner(ScanBackend):
    """
    Scanner met script: elke scan pakt het volgende item uit `script`
    ("clean", "infected" of een exception); daarna `default`.
    """

    name = "fake-av"

    def __init__(self):
        self.script = []
        self.default = CLEAN
        self.scanned = []

    def scan(self, target: ScanTarget) -> Verdict:
        self.scanned.append(target.key)
        outcome = self.script.pop(0) if self.script else self.default
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == INFECTED:
            return Verdict(verdict=INFECTED, engine=self.name, version="1.0", threats=["Eicar-Test-Signature"])
        return Verdict(verdict=outcome, engine=self.name, version="1.0")

    def fail_next(self, times: int = 1, message: str = "scanner unreachable") -> None:
        self.script.extend(ScanBackendError(message) for _ in range(times))


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        app_env="test",
        log_level="WARNING",
        database_url="sqlite://",
        storage_backend="local",
        local_storage_root=str(tmp_path / "blobs"),
        local_storage_base_url="http://testserver/local-blobs",
        local_signing_secret="test-secret",
        scan_backend="clamd",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scanner():
    return FakeScanner()


@pytest.fixture
def catalog():
    return InMemoryCatalog()


@pytest.fixture
def make_pipeline(tmp_path, clock, scanner, catalog):
    def _make(**overrides) -> AssetPipeline:
        settings = make_settings(tmp_path, **overrides)
        # één gedeelde in-memory connectie, ook vanuit de job threads
        engine = make_engine("sqlite://", poolclass=StaticPool)
        Base.metadata.create_all(bind=engine)
        store = LocalBlobStore(
            settings.local_storage_root,
            base_url=settings.local_storage_base_url,
            secret=settings.local_signing_secret,
            clock=clock,
        )
        return AssetPipeline(
            settings,
            make_session_factory(engine),
            store,
            scanner,
            catalog,
            clock=clock,
            rng=random.Random(7),
        )

    return _make


@pytest.fixture
def pipeline(make_pipeline):
    p = make_pipeline()
    yield p
    p.runner.shutdown()


@pytest.fixture
def alice():
    return Identity("alice")


@pytest.fixture
def bob():
    return Identity("bob")


@pytest.fixture
def admin():
    return Identity("ops", role="admin")


@pytest.fixture
def image_bytes():
    def _make(width: int = 640, height: int = 480, fmt: str = "JPEG", mode: str = "RGB", pad_to: int = 0) -> bytes:
        color = (30, 120, 200, 128) if mode == "RGBA" else (30, 120, 200)
        img = Image.new(mode, (width, height), color)
        buf = io.BytesIO()
        img.save(buf, format=fmt)
        data = buf.getvalue()
        if pad_to:
            # bytes na de EOI marker negeert de decoder
            assert len(data) <= pad_to
            data += b"\0" * (pad_to - len(data))
        return data

    return _make


@pytest.fixture
def upload(pipeline):
    """initiate + (gesimuleerde) client upload naar de blob store."""

    def _upload(
        identity,
        data: bytes = b"%PDF-1.4\n% test document\n",
        file_name: str = "report.pdf",
        content_type: str = "application/pdf",
        put: bool = True,
        target: AssetPipeline = None,
        **kwargs,
    ):
        p = target or pipeline
        ticket = p.initiate_upload(identity, file_name, len(data), content_type, **kwargs)
        if put:
            p.store.put(ticket.storage_key, data, content_type)
        return ticket

    return _upload


@pytest.fixture
def ingest(pipeline, upload):
    """Upload + confirm; retourneert het PROCESSING asset."""

    def _ingest(identity, title: str = "Test asset", target: AssetPipeline = None, **kwargs):
        p = target or pipeline
        ticket = upload(identity, target=p, **kwargs)
        return p.confirm_upload(identity, ticket.asset_id, title)

    return _ingest


@pytest.fixture
def client(pipeline):
    app = create_app(pipeline=pipeline)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def headers():
    def _headers(user: str = "alice", role: str = "user"):
        return {"X-User-Id": user, "X-User-Role": role}

    return _headers


@pytest.fixture
def settings_factory(tmp_path):
    def _settings(**overrides) -> Settings:
        return make_settings(tmp_path, **overrides)

    return _settings
