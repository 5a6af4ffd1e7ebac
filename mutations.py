# Admin-Änderungen: Inhalte hochladen, ersetzen und löschen

import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse

from content import (
    CONTENT_TYPES,
    MEDIA_TYPES,
    POLL_MARKER,
    PUZZLE_MARKER,
    build_countdown_body,
    build_iframe_body,
    get_file_type,
    get_puzzle_image_index,
)
from errors import ContentError, NotFoundError, StorageError
from storage import delete_file, ensure_directory, parse_iso_date

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DOOR_COUNT = 24


def _extension(filename):
    return os.path.splitext(filename or "")[1].lower()


@dataclass
class UploadRequest:
    content_type: str
    text: Optional[str] = None
    file_name: Optional[str] = None
    file_data: Optional[bytes] = None
    question: Optional[str] = None
    options: Optional[List[str]] = None
    countdown_date: Optional[str] = None
    countdown_text: str = ""
    url: Optional[str] = None
    message: Optional[str] = None


def validate_upload(door, upload):
    """Prüft eine Anfrage vollständig, bevor irgendetwas verändert wird.

    Wirft ``ContentError`` mit einer lesbaren Begründung.
    """
    if not 1 <= int(door) <= DOOR_COUNT:
        raise ContentError(f"Türchennummer muss zwischen 1 und {DOOR_COUNT} liegen.")

    content_type = upload.content_type
    if content_type not in CONTENT_TYPES:
        raise ContentError("Ungültiger Inhaltstyp.")

    if content_type == "text":
        if not (upload.text or "").strip():
            raise ContentError("Der Text darf nicht leer sein.")
    elif content_type == "poll":
        if not (upload.question or "").strip():
            raise ContentError("Bitte eine Frage für die Umfrage angeben.")
        options = [str(option).strip() for option in (upload.options or []) if str(option).strip()]
        if not options:
            raise ContentError("Die Umfrage braucht mindestens eine Antwortmöglichkeit.")
        if len(set(options)) != len(options):
            raise ContentError("Antwortmöglichkeiten müssen eindeutig sein.")
    elif content_type == "countdown":
        countdown_date = (upload.countdown_date or "").strip()
        if not DATE_PATTERN.match(countdown_date) or parse_iso_date(countdown_date) is None:
            raise ContentError("Countdown-Datum im Format JJJJ-MM-TT erforderlich.")
    elif content_type == "iframe":
        url = (upload.url or "").strip()
        if not url:
            raise ContentError("Bitte eine URL für das Iframe angeben.")
        if urlparse(url).scheme not in ("http", "https") or not urlparse(url).netloc:
            raise ContentError("Die Iframe-URL muss mit http:// oder https:// beginnen.")
    else:
        if not upload.file_data or not upload.file_name:
            raise ContentError("Keine Datei hochgeladen.")
        expected = "image" if content_type == "puzzle" else content_type
        actual = get_file_type(upload.file_name)
        if actual != expected:
            raise ContentError(
                f"Dateityp {os.path.splitext(upload.file_name)[1] or '(ohne Endung)'} passt nicht zu {content_type}."
            )


class ContentPipeline:
    """Führt Uploads und Löschungen in fester Reihenfolge aus.

    Ersetzen ist immer Löschen und Neuanlegen. Die Türchen-Liste im
    Response-Cache wird erst nach der gespeicherten Änderung verworfen.
    """

    def __init__(self, registry, polls, thumbnails, messages, response_cache):
        self.registry = registry
        self.polls = polls
        self.thumbnails = thumbnails
        self.messages = messages
        self.response_cache = response_cache

    @property
    def media_dir(self):
        return self.registry.media_dir

    def upload(self, door, upload):
        door = int(door)
        validate_upload(door, upload)

        if self.registry.get(door) is not None:
            logging.info("Ersetze Inhalt von Türchen %s", door)
            self._remove_door(door)

        content_type = upload.content_type
        if content_type == "text":
            self._store_text(door, upload.text)
        elif content_type == "poll":
            options = [str(option).strip() for option in upload.options if str(option).strip()]
            self.polls.create_poll(door, upload.question.strip(), options)
            self._store_text(door, POLL_MARKER)
        elif content_type == "countdown":
            body = build_countdown_body(upload.countdown_date.strip(), upload.countdown_text or "")
            self._store_text(door, body)
        elif content_type == "iframe":
            self._store_text(door, build_iframe_body(upload.url.strip()))
        elif content_type == "puzzle":
            image_index = get_puzzle_image_index(door)
            image_name = self._write_file(image_index, _extension(upload.file_name), upload.file_data)
            marker_name = self._write_file(door, ".txt", PUZZLE_MARKER.encode("utf-8"))
            self.registry.set_many({door: marker_name, image_index: image_name})
        elif content_type in MEDIA_TYPES:
            filename = self._write_file(door, _extension(upload.file_name), upload.file_data)
            self.registry.set(door, filename)

        message = (upload.message or "").strip()
        if message and content_type not in ("text", "countdown"):
            self.messages.set(door, upload.message)

        self.response_cache.invalidate()
        logging.info("Türchen %s mit Inhalt vom Typ %s gespeichert", door, content_type)
        return True

    def delete(self, door):
        door = int(door)
        if self.registry.get(door) is None:
            raise NotFoundError(f"Türchen {door} hat keinen Inhalt.")
        self._remove_door(door)
        self.response_cache.invalidate()
        logging.info("Inhalt von Türchen %s gelöscht", door)
        return True

    def _remove_door(self, door):
        # Dateinamen vor dem Registry-Eintrag einsammeln, sonst ist das
        # Rätselbild nicht mehr auffindbar
        filenames = self.registry.files_for(door)
        for filename in filenames:
            self.thumbnails.invalidate(filename)
        self.polls.delete_poll(door)
        self.registry.delete(door)
        for filename in filenames:
            delete_file(self.registry.path_for(filename))
        self.messages.delete(door)

    def _store_text(self, door, body):
        filename = self._write_file(door, ".txt", body.encode("utf-8"))
        self.registry.set(door, filename)

    def _write_file(self, index, extension, data):
        filename = f"{index}{extension}"
        path = os.path.join(self.media_dir, filename)
        try:
            ensure_directory(self.media_dir)
            with open(path, "wb") as file:
                file.write(data)
        except OSError as exc:
            logging.error("Datei %s konnte nicht gespeichert werden: %s", path, exc)
            raise StorageError(f"Datei {filename} konnte nicht gespeichert werden") from exc
        return filename
