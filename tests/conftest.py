"""Shared pytest fixtures for Prompt Library tests."""

import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from promptlib.api.main import create_app
from promptlib.core.attachment_store import LocalAttachmentStore
from promptlib.core.card_repository import CardRepository
from promptlib.core.cleanup import CleanupQueue
from promptlib.core.config import PromptLibConfig
from promptlib.core.errors import AttachmentIOError
from promptlib.core.lifecycle import CardService
from promptlib.core.models import CardFields, ImageUpload

SIGNING_SECRET = "test-secret"


def make_image_bytes(fmt: str = "PNG", color: tuple[int, int, int] = (200, 40, 40)) -> bytes:
    """Encode a tiny solid-colour image in ``fmt``."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buffer, format=fmt)
    return buffer.getvalue()


class RecordingStore(LocalAttachmentStore):
    """Local store that records calls and can be told to fail.

    Attributes:
        puts: Keys passed to ``put``, in call order
        deletes: Paths passed to ``delete``, in call order
        fail_put_on: Slot folder (``output``/``reference``) whose put fails
        fail_delete_paths: Paths whose delete fails
    """

    def __init__(self, root: Path) -> None:
        super().__init__(root, SIGNING_SECRET)
        self.puts: list[str] = []
        self.deletes: list[str] = []
        self.fail_put_on: str | None = None
        self.fail_delete_paths: set[str] = set()
        self.fail_all_deletes = False

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.puts.append(key)
        if self.fail_put_on and key.startswith(f"{self.fail_put_on}/"):
            raise AttachmentIOError(f"Simulated upload failure for {key}", path=key)
        return super().put(key, data, content_type)

    def delete(self, path: str) -> None:
        self.deletes.append(path)
        if self.fail_all_deletes or path in self.fail_delete_paths:
            raise AttachmentIOError(f"Simulated delete failure for {path}", path=path)
        super().delete(path)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> PromptLibConfig:
    """Create a test configuration rooted in a temporary directory."""
    return PromptLibConfig(
        _env_file=None,
        data_dir=temp_dir / "data",
        database_path=temp_dir / "data" / "cards.db",
        attachments_dir=temp_dir / "data" / "attachments",
        url_signing_secret=SIGNING_SECRET,
        cleanup_workers=2,
    )


@pytest.fixture
def store(temp_dir: Path) -> RecordingStore:
    """Recording attachment store in a temporary directory."""
    return RecordingStore(temp_dir / "attachments")


@pytest.fixture
def repository(temp_dir: Path) -> CardRepository:
    """Card repository backed by a temporary SQLite file."""
    return CardRepository(temp_dir / "cards.db", timeout=1.0)


@pytest.fixture
def service(repository: CardRepository, store: RecordingStore) -> Generator[CardService, None, None]:
    """Card service wired to the temporary repository and recording store."""
    card_service = CardService(repository, store, CleanupQueue(store, max_workers=2))
    try:
        yield card_service
    finally:
        card_service.close()


@pytest.fixture
def card_fields() -> CardFields:
    """Valid fields for a new card."""
    return CardFields(
        prompt="A lighthouse at dusk, volumetric fog",
        metadata="steps=30, cfg=7",
        client="Acme",
        model="sdxl",
        seed="1234",
        llm_used="gpt-4o",
        notes="First pass",
    )


@pytest.fixture
def png_upload() -> ImageUpload:
    """Valid PNG upload."""
    return ImageUpload("output.png", "image/png", make_image_bytes("PNG"))


@pytest.fixture
def jpeg_upload() -> ImageUpload:
    """Valid JPEG upload."""
    return ImageUpload("reference.jpg", "image/jpeg", make_image_bytes("JPEG", (10, 90, 200)))


@pytest.fixture
def gif_upload() -> ImageUpload:
    """Valid GIF upload."""
    return ImageUpload("replacement.gif", "image/gif", make_image_bytes("GIF", (20, 200, 20)))


@pytest.fixture
def existing_card(service: CardService, card_fields, png_upload, jpeg_upload):
    """A card already created through the service, with the store call log reset."""
    card = service.create_card(card_fields, png_upload, jpeg_upload)
    service.store.puts.clear()
    service.store.deletes.clear()
    return card


@pytest.fixture
def test_client(service: CardService) -> Generator[TestClient, None, None]:
    """FastAPI TestClient bound to the temporary card service."""
    with TestClient(create_app(service)) as client:
        yield client
