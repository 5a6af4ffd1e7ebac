# Dateibasierte Ablage: JSON-Dokumente, Einstellungen, Zusatznachrichten und
# die Zuordnung Türchen -> Datei (Registry)

import datetime
import json
import logging
import os
import tempfile
import threading
import time

from content import PUZZLE_OFFSET, get_puzzle_image_index, is_puzzle_marker
from errors import ContentError, StorageError


def ensure_directory(path):
    os.makedirs(path, exist_ok=True)


def delete_file(path, retries=3, delay=0.1):
    """Löscht eine Datei; fehlende Dateien sind kein Fehler.

    Gibt ``True`` zurück, wenn tatsächlich etwas gelöscht wurde.
    """
    for attempt in range(1, retries + 1):
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            if attempt == retries:
                logging.error("Datei %s konnte nicht gelöscht werden: %s", path, exc)
                raise StorageError(f"Datei konnte nicht gelöscht werden: {os.path.basename(path)}") from exc
            time.sleep(delay)
    return False


def cleanup_temp_files(*directories):
    removed = 0
    for directory in directories:
        if not os.path.isdir(directory):
            continue
        for filename in os.listdir(directory):
            if not filename.endswith(".tmp"):
                continue
            try:
                os.remove(os.path.join(directory, filename))
                removed += 1
            except OSError as exc:
                logging.warning("Temporäre Datei %s bleibt liegen: %s", filename, exc)
    return removed


class JsonDocument:
    """Ein komplettes JSON-Dokument auf der Platte.

    Jede Änderung liest das ganze Dokument, verändert es und schreibt es
    vollständig zurück. ``update`` hält dabei eine Sperre pro Dokument.
    """

    def __init__(self, path, default_factory=dict):
        self.path = path
        self.default_factory = default_factory
        self.lock = threading.RLock()

    def exists(self):
        return os.path.exists(self.path)

    def load(self):
        if not os.path.exists(self.path):
            return self.default_factory()
        try:
            with open(self.path, "r", encoding="utf-8") as file:
                return json.load(file)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            logging.error("Fehler beim Laden von %s: %s", self.path, exc)
            raise StorageError(f"{os.path.basename(self.path)} konnte nicht gelesen werden") from exc

    def save(self, document):
        directory = os.path.dirname(self.path) or "."
        try:
            ensure_directory(directory)
            fd, tmp_path = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as file:
                    json.dump(document, file, indent=2, ensure_ascii=False)
                    file.flush()
                    os.fsync(file.fileno())
                os.replace(tmp_path, self.path)
            finally:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
        except OSError as exc:
            logging.error("Fehler beim Speichern von %s: %s", self.path, exc)
            raise StorageError(f"{os.path.basename(self.path)} konnte nicht gespeichert werden") from exc

    def update(self, mutate):
        """Wendet ``mutate`` unter der Sperre an und speichert das Ergebnis.

        ``mutate`` verändert das Dokument an Ort und Stelle und darf einen
        Wert zurückgeben, der an den Aufrufer durchgereicht wird.
        """
        with self.lock:
            document = self.load()
            result = mutate(document)
            self.save(document)
            return result

    def initialize(self):
        with self.lock:
            if not os.path.exists(self.path):
                self.save(self.default_factory())


def default_settings(today=None):
    year = (today or datetime.date.today()).year
    return {
        "startDate": f"{year}-12-01",
        "title": f"Adventskalender {year}",
        "description": "Öffne jeden Tag ein neues Türchen und entdecke die Überraschung! 🎁",
    }


def parse_iso_date(value):
    """``YYYY-MM-DD`` -> ``datetime.date``; alles andere ergibt ``None``."""
    if not isinstance(value, str) or len(value.strip()) != 10:
        return None
    try:
        return datetime.datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


class SettingsStore:
    def __init__(self, path):
        self.document = JsonDocument(path, default_settings)

    def get(self):
        if not self.document.exists():
            settings = default_settings()
            self.document.save(settings)
            logging.info("Standard-Einstellungen angelegt")
            return settings
        settings = default_settings()
        stored = self.document.load()
        if isinstance(stored, dict):
            settings.update({key: stored[key] for key in settings if isinstance(stored.get(key), str)})
        return settings

    def get_start_date(self):
        start = parse_iso_date(self.get().get("startDate"))
        if start is None:
            start = parse_iso_date(default_settings()["startDate"])
            logging.warning("Ungültiges Startdatum in den Einstellungen, verwende %s", start)
        return start

    def save(self, start_date, title, description):
        if parse_iso_date(start_date) is None:
            raise ContentError("Das Startdatum muss im Format JJJJ-MM-TT angegeben werden.")
        settings = {
            "startDate": start_date.strip(),
            "title": str(title or "").strip(),
            "description": str(description or "").strip(),
        }
        self.document.save(settings)
        logging.info("Einstellungen gespeichert: Start %s", settings["startDate"])
        return settings


class MessageStore:
    """Optionale Zusatznachricht (Markdown) pro Türchen als ``{tuer}.txt``."""

    def __init__(self, directory):
        self.directory = directory

    def path_for(self, door):
        return os.path.join(self.directory, f"{int(door)}.txt")

    def get(self, door):
        path = self.path_for(door)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as file:
                return file.read()
        except (OSError, UnicodeDecodeError) as exc:
            logging.error("Nachricht für Türchen %s konnte nicht gelesen werden: %s", door, exc)
            return None

    def set(self, door, message):
        ensure_directory(self.directory)
        try:
            with open(self.path_for(door), "w", encoding="utf-8") as file:
                file.write(message)
        except OSError as exc:
            logging.error("Nachricht für Türchen %s konnte nicht gespeichert werden: %s", door, exc)
            raise StorageError("Nachricht konnte nicht gespeichert werden") from exc

    def delete(self, door):
        return delete_file(self.path_for(door))


class ContentRegistry:
    """Zuordnung Türchen-Index -> Dateiname im Medienverzeichnis.

    Rätsel-Türchen belegen zwei Einträge: die Markierungsdatei unter der
    Türchennummer und das Bild unter ``tuer + 1000``.
    """

    def __init__(self, path, media_dir):
        self.document = JsonDocument(path, dict)
        self.media_dir = media_dir

    @staticmethod
    def get_puzzle_image_index(door):
        return get_puzzle_image_index(door)

    def initialize(self):
        self.document.initialize()

    def get_all(self):
        entries = self.document.load()
        result = {}
        for key, filename in entries.items():
            try:
                result[int(key)] = filename
            except (TypeError, ValueError):
                logging.warning("Ungültiger Registry-Schlüssel ignoriert: %s", key)
        return result

    def get(self, door):
        return self.document.load().get(str(int(door)))

    def path_for(self, filename):
        return os.path.join(self.media_dir, filename)

    def set(self, door, filename):
        def _set(entries):
            entries[str(int(door))] = filename

        self.document.update(_set)

    def set_many(self, assignments):
        def _set(entries):
            for door, filename in assignments.items():
                entries[str(int(door))] = filename

        self.document.update(_set)

    def delete(self, door):
        """Entfernt den Eintrag; bei Rätseln auch den Bild-Eintrag.

        ``False`` heißt "nichts zu löschen", Lese- und Schreibfehler kommen als
        ``StorageError``.
        """
        door = int(door)

        def _delete(entries):
            filename = entries.get(str(door))
            if filename is None:
                return False
            if door < PUZZLE_OFFSET and is_puzzle_marker(self.path_for(filename)):
                entries.pop(str(get_puzzle_image_index(door)), None)
            del entries[str(door)]
            return True

        with self.document.lock:
            if str(door) not in self.document.load():
                return False
            return self.document.update(_delete)

    def files_for(self, door):
        """Alle Dateinamen, die zu einem Türchen gehören (inkl. Rätselbild)."""
        entries = self.document.load()
        filename = entries.get(str(int(door)))
        if filename is None:
            return []
        filenames = [filename]
        if is_puzzle_marker(self.path_for(filename)):
            image = entries.get(str(get_puzzle_image_index(door)))
            if image:
                filenames.append(image)
        return filenames
