"""Media service tests: store, replace, best-effort removal and orphan sweeps."""

from unittest.mock import MagicMock

import pytest

from app.core.errors import ConnectivityError, ObjectNotFound, UploadFailed
from app.services.media_service import MediaService
from app.storage.retry import RetryPolicy
from app.storage.sources import BufferSource
from app.storage.uploader import UploadEngine

from tests.conftest import BUCKET


@pytest.fixture
def service(fake_store, staging_dir) -> MediaService:
    engine = UploadEngine(fake_store, RetryPolicy(), staging_dir=staging_dir)
    return MediaService(fake_store, engine, BUCKET)


@pytest.fixture
def captured_logger(monkeypatch) -> MagicMock:
    mock_logger = MagicMock()
    monkeypatch.setattr("app.services.media_service.logger", mock_logger)
    return mock_logger


# ============================================================================
# Store / replace
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_store_generates_key_and_proxy_url(service, fake_store):
    stored = await service.store(
        BufferSource(b"jpeg-bytes"),
        "manifestacoes",
        owner_id="60a1f",
        filename="Foto Praia.JPG",
    )

    assert stored.key.startswith("manifestacoes/60a1f/")
    assert stored.key.endswith(".jpg")
    assert stored.url == f"/api/proxy/minio/{stored.key}"
    assert stored.content_type == "image/jpeg"
    assert stored.size == 10

    stat = await fake_store.stat_object(BUCKET, stored.key)
    assert stat.content_type == "image/jpeg"
    assert stat.metadata["original-filename"] == "Foto%20Praia.JPG"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_declared_content_type_kept_unless_generic(service):
    declared = await service.store(BufferSource(b"a"), "praticas", filename="a.mp3", content_type="audio/x-m4a")
    generic = await service.store(
        BufferSource(b"a"), "praticas", filename="a.mp3", content_type="application/octet-stream"
    )

    assert declared.content_type == "audio/x-m4a"
    assert generic.content_type == "audio/mpeg"


@pytest.mark.unit
def test_url_for_public_base(fake_store):
    service = MediaService(fake_store, MagicMock(), BUCKET, public_base_url="https://cdn.example.com/media/")

    assert service.url_for("perfil/u 1/a.png") == "https://cdn.example.com/media/perfil/u%201/a.png"
    assert service.key_for_url("https://cdn.example.com/media/perfil/u%201/a.png") == "perfil/u 1/a.png"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_replace_uploads_new_then_removes_old(service, fake_store):
    fake_store.add("perfil/u1/old.png", b"old")

    stored = await service.replace("perfil/u1/old.png", BufferSource(b"new"), "perfil", owner_id="u1", filename="n.png")

    assert fake_store.data(stored.key) == b"new"
    assert (BUCKET, "perfil/u1/old.png") not in fake_store.objects
    assert fake_store.removed == ["perfil/u1/old.png"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_replace_keeps_old_object_when_upload_fails(service, fake_store):
    fake_store.add("perfil/u1/old.png", b"old")
    fake_store.put_failure = lambda attempt, size: RuntimeError("store down")

    with pytest.raises(UploadFailed):
        await service.replace("perfil/u1/old.png", BufferSource(b"new"), "perfil", owner_id="u1")

    assert fake_store.data("perfil/u1/old.png") == b"old"
    assert fake_store.removed == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_replace_survives_failed_removal(service, fake_store, captured_logger):
    fake_store.add("perfil/u1/old.png", b"old")
    fake_store.fail_remove = ConnectivityError("connection refused")

    stored = await service.replace("perfil/u1/old.png", BufferSource(b"new"), "perfil", owner_id="u1")

    assert fake_store.data(stored.key) == b"new"
    assert fake_store.data("perfil/u1/old.png") == b"old"
    captured_logger.warning.assert_called_once()
    assert captured_logger.warning.call_args.args[0] == "orphaned_object"


# ============================================================================
# Removal
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_remove_is_idempotent(service, fake_store):
    fake_store.add("praticas/a.mp3", b"a")

    assert await service.remove("praticas/a.mp3") is True
    assert await service.remove("praticas/a.mp3") is True
    assert (BUCKET, "praticas/a.mp3") not in fake_store.objects


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", None])
async def test_remove_without_key_is_noop(service, fake_store, key):
    assert await service.remove(key) is False
    assert fake_store.removed == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_remove_failure_logged_as_orphan(service, fake_store, captured_logger):
    fake_store.fail_remove = ConnectivityError("connection refused")

    assert await service.remove("praticas/a.mp3") is False

    captured_logger.warning.assert_called_once()
    event, = captured_logger.warning.call_args.args
    assert event == "orphaned_object"
    assert captured_logger.warning.call_args.kwargs["key"] == "praticas/a.mp3"


# ============================================================================
# Presigned URLs and sweeping
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_presigned_url_requires_existing_object(service, fake_store):
    fake_store.add("praticas/a.mp3", b"a")

    url = await service.presigned_url("praticas/a.mp3", 7200)
    assert "X-Amz-Expires=7200" in url

    with pytest.raises(ObjectNotFound):
        await service.presigned_url("praticas/missing.mp3", 7200)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sweep_dry_run_reports_without_removing(service, fake_store):
    fake_store.add("perfil/u1/kept.png", b"1")
    fake_store.add("perfil/u1/orphan.png", b"2")
    fake_store.add("_test_/1699999999999.txt", b"3")

    orphans = await service.sweep_orphans("", ["perfil/u1/kept.png"])

    assert orphans == ["perfil/u1/orphan.png"]
    assert fake_store.removed == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sweep_removes_orphans_under_prefix(service, fake_store):
    fake_store.add("perfil/u1/kept.png", b"1")
    fake_store.add("perfil/u1/orphan.png", b"2")
    fake_store.add("praticas/u1/other.mp3", b"3")

    orphans = await service.sweep_orphans("perfil/", {"perfil/u1/kept.png"}, dry_run=False)

    assert orphans == ["perfil/u1/orphan.png"]
    assert fake_store.removed == ["perfil/u1/orphan.png"]
    assert fake_store.data("praticas/u1/other.mp3") == b"3"
