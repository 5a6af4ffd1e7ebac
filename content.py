# Inhaltstypen der Türchen und Auflösung einer gespeicherten Datei in das,
# was an den Browser geht

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, Optional

PUZZLE_OFFSET = 1000

POLL_MARKER = "<[poll]>"
PUZZLE_MARKER = "<[puzzle]>"
COUNTDOWN_MARKER = "<[countdown]>"
IFRAME_MARKER = "<[iframe]>"

IFRAME_PATTERN = re.compile(re.escape(IFRAME_MARKER) + r"(.*?)" + re.escape(IFRAME_MARKER), re.DOTALL)

NOT_AVAILABLE = "not available yet"

CONTENT_TYPES = (
    "text",
    "image",
    "video",
    "audio",
    "gif",
    "poll",
    "puzzle",
    "countdown",
    "iframe",
)

MEDIA_TYPES = ("image", "video", "audio", "gif")

FILE_TYPES = {
    ".txt": "text",
    ".md": "text",
    ".jpg": "image",
    ".jpeg": "image",
    ".png": "image",
    ".webp": "image",
    ".mp4": "video",
    ".webm": "video",
    ".mov": "video",
    ".gif": "gif",
    ".mp3": "audio",
    ".wav": "audio",
    ".ogg": "audio",
}

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".txt": "text/plain",
    ".md": "text/markdown",
}

# Markierungstext -> Inhaltstyp, nur bei exakter Übereinstimmung
SENTINEL_TYPES = {
    COUNTDOWN_MARKER: "countdown",
    POLL_MARKER: "poll",
    PUZZLE_MARKER: "puzzle",
}


def get_file_type(filename):
    extension = os.path.splitext(filename or "")[1].lower()
    return FILE_TYPES.get(extension, "unknown")


def get_mime_type(filename):
    extension = os.path.splitext(filename or "")[1].lower()
    return MIME_TYPES.get(extension, "application/octet-stream")


def get_puzzle_image_index(door):
    return int(door) + PUZZLE_OFFSET


def normalize_door_index(index):
    """Rätselbilder (Index >= 1000) teilen sich das Datum ihres Türchens."""
    index = int(index)
    return index - PUZZLE_OFFSET if index >= PUZZLE_OFFSET else index


def media_url(index):
    return f"/media/{int(index)}"


def read_text(path):
    with open(path, "r", encoding="utf-8") as file:
        return file.read()


def is_puzzle_marker(path):
    if get_file_type(path) != "text" or not os.path.isfile(path):
        return False
    try:
        return read_text(path).strip() == PUZZLE_MARKER
    except (OSError, UnicodeDecodeError) as exc:
        logging.warning("Rätsel-Markierung in %s nicht lesbar: %s", path, exc)
        return False


class ClientDoorHints:
    """Vom Browser mitgeschickter Türchen-Zustand (z. B. Rätsel gelöst).

    Nur ein Darstellungshinweis. Für Zugriffsentscheidungen wird er nie
    herangezogen.
    """

    def __init__(self, states=None):
        self._solved = set()
        for key, state in (states or {}).items():
            try:
                door = int(key)
            except (TypeError, ValueError):
                continue
            if isinstance(state, dict) and state.get("win") is True:
                self._solved.add(door)
        self.raw_present = bool(states)

    @classmethod
    def from_query(cls, raw):
        """Liest den ``doorStates``-Parameter; ungültiges JSON -> ``ValueError``."""
        if not raw:
            return cls()
        states = json.loads(raw)
        if not isinstance(states, dict):
            raise ValueError("doorStates muss ein JSON-Objekt sein")
        return cls(states)

    def __bool__(self):
        return self.raw_present

    def is_solved(self, door):
        return int(door) in self._solved


@dataclass
class ResolvedContent:
    type: str
    payload: Optional[str] = None
    meta: Optional[Dict[str, str]] = None
    thumbnail_override: Optional[str] = None
    puzzle_image_index: Optional[int] = None
    is_solved: Optional[bool] = None


def _countdown_meta(parsed):
    target_date = parsed.get("targetDate")
    text = parsed.get("text")
    return {
        "targetDate": target_date if isinstance(target_date, str) else "",
        "text": text if isinstance(text, str) else "",
    }


def classify_text(body):
    """Ordnet einen Textkörper einem Inhaltstyp zu.

    Reihenfolge: Countdown-Markierung, Countdown-JSON, Umfrage, Rätsel,
    Iframe, sonst Text.
    """
    trimmed = body.strip()

    if trimmed == COUNTDOWN_MARKER:
        return ResolvedContent("countdown", meta={"targetDate": "", "text": ""})

    if trimmed.startswith("{"):
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and parsed.get("type") == "countdown":
            return ResolvedContent("countdown", meta=_countdown_meta(parsed))

    sentinel_type = SENTINEL_TYPES.get(trimmed)
    if sentinel_type:
        return ResolvedContent(sentinel_type)

    match = IFRAME_PATTERN.search(body)
    if match:
        return ResolvedContent("iframe", payload=match.group(1).strip())

    return ResolvedContent("text", payload=body)


def resolve_content(file_path, declared_type, hints, door):
    """Löst eine Inhaltsdatei auf. Wirft nie; im Zweifel wird es Text."""
    hints = hints or ClientDoorHints()
    try:
        if declared_type in MEDIA_TYPES:
            return ResolvedContent(declared_type, payload=media_url(door))

        body = read_text(file_path)
        resolved = classify_text(body)
    except Exception as exc:  # Auflösung darf die Anfrage nie scheitern lassen
        logging.error("Inhalt von Türchen %s konnte nicht aufbereitet werden: %s", door, exc)
        return ResolvedContent("text")

    if resolved.type == "puzzle":
        image_index = get_puzzle_image_index(door)
        resolved.puzzle_image_index = image_index
        resolved.payload = media_url(image_index)
        resolved.is_solved = hints.is_solved(door)
        if resolved.is_solved:
            resolved.thumbnail_override = resolved.payload
    return resolved


def build_countdown_body(target_date, text):
    return json.dumps({"type": "countdown", "targetDate": target_date, "text": text}, indent=2, ensure_ascii=False)


def build_iframe_body(url):
    return f"{IFRAME_MARKER}{url}{IFRAME_MARKER}"
