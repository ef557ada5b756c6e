import pytest

from effect_studio.core.config import Settings
from effect_studio.api.dependencies import build_services
from effect_studio.core.storage import LocalStorage, MemoryStorage, StorageFactory


@pytest.mark.asyncio
async def test_local_storage_round_trip(tmp_path):
    storage = LocalStorage(base_path=str(tmp_path))

    await storage.save("uploads/abc.jpg", b"bytes")

    assert await storage.exists("uploads/abc.jpg") is True
    assert await storage.read("uploads/abc.jpg") == b"bytes"
    assert not list(tmp_path.rglob("*.part"))

    assert await storage.delete("uploads/abc.jpg") is True
    assert await storage.delete("uploads/abc.jpg") is False
    assert await storage.exists("uploads/abc.jpg") is False


@pytest.mark.asyncio
async def test_local_storage_missing_key(tmp_path):
    storage = LocalStorage(base_path=str(tmp_path))

    with pytest.raises(FileNotFoundError):
        await storage.read("results/missing.jpg")


@pytest.mark.asyncio
async def test_local_storage_rejects_paths_outside_base(tmp_path):
    storage = LocalStorage(base_path=str(tmp_path / "blobs"))

    with pytest.raises(FileNotFoundError):
        await storage.read("../escape.jpg")
    assert await storage.exists("../escape.jpg") is False


def test_factory_selects_backend(tmp_path):
    assert isinstance(StorageFactory.create(Settings(STORAGE_BACKEND="memory")), MemoryStorage)

    storage = StorageFactory.create(Settings(STORAGE_BACKEND="local", LOCAL_STORAGE_PATH=str(tmp_path)))
    assert isinstance(storage, LocalStorage)
    assert storage.base_path == tmp_path


def test_factory_builds_a_fresh_backend_per_call():
    config = Settings(STORAGE_BACKEND="memory")

    assert StorageFactory.create(config) is not StorageFactory.create(config)


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError):
        StorageFactory.create(Settings(STORAGE_BACKEND="azure"))


def test_each_app_gets_the_backend_its_config_names(tmp_path):
    memory_services = build_services(Settings(STORAGE_BACKEND="memory", GEMINI_API_KEY=None))
    local_services = build_services(
        Settings(STORAGE_BACKEND="local", LOCAL_STORAGE_PATH=str(tmp_path), GEMINI_API_KEY=None)
    )

    assert isinstance(memory_services.storage, MemoryStorage)
    assert isinstance(local_services.storage, LocalStorage)
    assert local_services.storage.base_path == tmp_path


def test_explicit_empty_backend_is_used_as_given():
    storage = MemoryStorage()

    services = build_services(Settings(STORAGE_BACKEND="local", GEMINI_API_KEY=None), storage=storage)

    assert services.storage is storage
    assert services.image_store.storage is storage
