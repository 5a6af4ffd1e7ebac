import os

import pytest

from content import PUZZLE_MARKER
from errors import ContentError, StorageError
from storage import ContentRegistry, JsonDocument, SettingsStore, cleanup_temp_files, delete_file


def _registry(tmp_path):
    media_dir = tmp_path / "media"
    media_dir.mkdir()
    registry = ContentRegistry(str(tmp_path / "medium.json"), str(media_dir))
    registry.initialize()
    return registry, media_dir


def test_registry_delete_is_idempotent(tmp_path):
    registry, media_dir = _registry(tmp_path)
    (media_dir / "3.txt").write_text("Hallo", encoding="utf-8")
    registry.set(3, "3.txt")
    registry.set(4, "4.png")

    assert registry.delete(3) is True
    snapshot = registry.get_all()
    assert registry.delete(3) is False
    assert registry.get_all() == snapshot == {4: "4.png"}


def test_registry_delete_cascades_puzzle_image(tmp_path):
    registry, media_dir = _registry(tmp_path)
    (media_dir / "8.txt").write_text(PUZZLE_MARKER, encoding="utf-8")
    (media_dir / "1008.jpg").write_bytes(b"bild")
    registry.set_many({8: "8.txt", 1008: "1008.jpg"})

    assert registry.files_for(8) == ["8.txt", "1008.jpg"]
    assert registry.delete(8) is True
    assert registry.get(8) is None
    assert registry.get(1008) is None


def test_puzzle_image_index():
    assert ContentRegistry.get_puzzle_image_index(12) == 1012


def test_json_document_save_leaves_no_temp_files(tmp_path):
    document = JsonDocument(str(tmp_path / "daten.json"))
    document.save({"1": "1.txt"})
    document.update(lambda data: data.update({"2": "2.txt"}))

    assert document.load() == {"1": "1.txt", "2": "2.txt"}
    assert os.listdir(tmp_path) == ["daten.json"]


def test_json_document_missing_and_corrupt(tmp_path):
    path = tmp_path / "kaputt.json"
    document = JsonDocument(str(path), list)
    assert document.load() == []

    path.write_text("{nicht json", encoding="utf-8")
    with pytest.raises(StorageError):
        document.load()


def test_settings_defaults_and_validation(tmp_path):
    settings = SettingsStore(str(tmp_path / "settings.json"))

    defaults = settings.get()
    assert defaults["startDate"].endswith("-12-01")
    assert (tmp_path / "settings.json").exists()

    saved = settings.save("2024-11-28", " Vereinskalender ", "Für alle")
    assert saved["title"] == "Vereinskalender"
    assert settings.get_start_date().isoformat() == "2024-11-28"

    with pytest.raises(ContentError):
        settings.save("28.11.2024", "x", "y")


def test_delete_file_and_temp_cleanup(tmp_path):
    stale = tmp_path / ".abc.tmp"
    stale.write_text("", encoding="utf-8")
    keep = tmp_path / "1.txt"
    keep.write_text("bleibt", encoding="utf-8")

    assert cleanup_temp_files(str(tmp_path), str(tmp_path / "gibt-es-nicht")) == 1
    assert keep.exists()
    assert delete_file(str(keep)) is True
    assert delete_file(str(keep)) is False
