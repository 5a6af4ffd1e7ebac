# Türchen lesen: Datumsprüfung, Registry, Inhalt, Vorschaubild, Umfrage

import logging
import os
import time

from caching import CachedListing, ResponseCache
from content import NOT_AVAILABLE, ClientDoorHints, get_file_type, normalize_door_index, resolve_content
from errors import ContentError, NotFoundError, NotYetAvailableError
from mutations import DOOR_COUNT, ContentPipeline
from polls import PollStore
from storage import ContentRegistry, JsonDocument, MessageStore, SettingsStore, cleanup_temp_files, ensure_directory
from thumbnails import CacheResetMarker, ThumbnailCache
from timing import get_day_number, is_available


def empty_door():
    return {
        "type": NOT_AVAILABLE,
        "data": None,
        "text": None,
        "thumbnail": None,
        "meta": None,
    }


class AdventCalendar:
    """Alle Bausteine eines Kalenders mit ihren Verzeichnissen.

    Tests bauen sich pro Fall eine frische Instanz über ``build_calendar``.
    """

    def __init__(self, data_dir, media_dir, thumbnail_dir, settings, registry, messages, polls,
                 thumbnails, response_cache, pipeline, clock=time.time):
        self.data_dir = data_dir
        self.media_dir = media_dir
        self.thumbnail_dir = thumbnail_dir
        self.settings = settings
        self.registry = registry
        self.messages = messages
        self.polls = polls
        self.thumbnails = thumbnails
        self.response_cache = response_cache
        self.pipeline = pipeline
        self.clock = clock
        self.credentials_path = os.path.join(data_dir, "admin-credentials.json")
        self.credentials = JsonDocument(self.credentials_path, dict)
        self.initialized = False

    def initialize(self):
        for directory in (self.data_dir, self.media_dir, self.thumbnail_dir, self.messages.directory):
            ensure_directory(directory)
        self.registry.initialize()
        self.polls.initialize()
        removed = cleanup_temp_files(self.media_dir, self.thumbnail_dir)
        if removed:
            logging.info("%s temporäre Dateien entfernt", removed)
        self.initialized = True

    # Datumsregel

    def is_available(self, index, today):
        return is_available(index, today, self.settings.get_start_date())

    def day_number(self, today):
        return get_day_number(today, self.settings.get_start_date())

    # Einzelnes Türchen auflösen

    def _resolve_door(self, door, hints, with_poll=False):
        filename = self.registry.get(door)
        if filename is None:
            return empty_door()

        file_path = self.registry.path_for(filename)
        if not os.path.isfile(file_path):
            logging.warning("Datei %s für Türchen %s fehlt", filename, door)
            return empty_door()

        resolved = resolve_content(file_path, get_file_type(filename), hints, door)

        thumbnail = resolved.thumbnail_override
        if thumbnail is None:
            thumbnail_path = self.thumbnails.generate(file_path, resolved.type)
            if thumbnail_path:
                thumbnail = self.thumbnails.url_for(thumbnail_path)

        data = resolved.payload
        if resolved.type in ("poll", "countdown"):
            data = None

        entry = {
            "type": resolved.type,
            "data": data,
            "text": self.messages.get(door),
            "thumbnail": thumbnail,
            "meta": resolved.meta,
        }
        if resolved.type == "puzzle":
            entry["isSolved"] = bool(resolved.is_solved)
        if with_poll and resolved.type == "poll":
            poll = self.polls.get_poll(door) or {"question": "", "options": []}
            entry["data"] = dict(poll, votes=self.polls.get_votes(door))
        return entry

    def compute_listing(self, today, hints):
        snapshot = {}
        for door in range(1, DOOR_COUNT + 1):
            if not self.is_available(door, today):
                snapshot[str(door)] = empty_door()
                continue
            snapshot[str(door)] = self._resolve_door(door, hints)
        return snapshot

    def list_doors(self, today, hints=None):
        """Alle 24 Türchen. Gibt ``(CachedListing, aus_cache)`` zurück.

        Anfragen mit Client-Zustand umgehen den Cache vollständig.
        """
        hints = hints or ClientDoorHints()
        if not hints:
            cached = self.response_cache.get()
            if cached is not None:
                return cached, True

        generation = self.response_cache.generation
        snapshot = self.compute_listing(today, hints)
        if hints:
            return CachedListing(snapshot=snapshot, created_at=self.clock()), False

        entry = self.response_cache.put(snapshot, generation)
        if entry is None:
            entry = CachedListing(snapshot=snapshot, created_at=self.clock())
        return entry, False

    def get_door(self, door, today, hints=None):
        if not self.is_available(door, today):
            raise NotYetAvailableError("Türchen ist noch nicht verfügbar.", status_code=403)
        return self._resolve_door(door, hints or ClientDoorHints(), with_poll=True)

    def door_status(self, today):
        entries = self.registry.get_all()
        status = {}
        for door in range(1, DOOR_COUNT + 1):
            has_content = door in entries
            available = self.is_available(door, today)
            status[str(door)] = {
                "hasContent": has_content,
                "isAvailable": available,
                "type": "locked" if has_content and available else NOT_AVAILABLE,
            }
        return status

    def admin_doors(self):
        hints = ClientDoorHints()
        return {str(door): self._resolve_door(door, hints, with_poll=True) for door in range(1, DOOR_COUNT + 1)}

    # Umfragen

    def get_poll(self, door, today, user_id=None):
        if not self.is_available(door, today):
            raise NotYetAvailableError("Die Umfrage ist noch nicht verfügbar.")
        poll = self.polls.get_poll(door)
        if poll is None:
            raise NotFoundError("Umfrage nicht gefunden.")
        return {
            "pollData": poll,
            "votes": self.polls.get_votes(door),
            "userVote": self.polls.get_user_vote(door, user_id),
        }

    def vote(self, door, today, option, user_id):
        if not self.is_available(door, today):
            raise NotYetAvailableError("Die Umfrage ist noch nicht verfügbar.")
        poll = self.polls.get_poll(door)
        if poll is None:
            raise NotFoundError("Umfrage nicht gefunden.")
        if option not in poll["options"]:
            raise ContentError("Ungültige Antwort.")
        return self.polls.vote(door, option, user_id)

    # Dateien

    def media_file(self, index, today):
        """Pfad der Originaldatei für ``/media/<index>`` (auch Rätselbilder)."""
        if not 1 <= normalize_door_index(index) <= DOOR_COUNT:
            raise NotFoundError("Datei nicht gefunden.")
        if not self.is_available(index, today):
            raise NotYetAvailableError("Datei ist noch nicht verfügbar.")
        filename = self.registry.get(index)
        if filename is None or not os.path.isfile(self.registry.path_for(filename)):
            raise NotFoundError("Datei nicht gefunden.")
        return filename

    def clear_caches(self):
        timestamp = self.thumbnails.clear_all()
        self.response_cache.invalidate()
        return timestamp

    def save_settings(self, start_date, title, description):
        settings = self.settings.save(start_date, title, description)
        self.response_cache.invalidate()
        return settings


def build_calendar(data_dir, media_dir=None, thumbnail_dir=None, thumbnail_width=500, thumbnail_quality=85,
                   ffmpeg_path=None, puzzle_placeholder=None, clock=time.time, cache_ttl=None):
    """Baut einen Kalender samt allen Bausteinen unter ``data_dir``.

    ``puzzle_placeholder`` ist der Pfad einer statischen Vorlage für
    Rätsel-Vorschaubilder. Fehlt sie (Standard), zeichnet
    ``ThumbnailCache`` ein einfaches Gitterbild.
    """
    media_dir = media_dir or os.path.join(data_dir, "media")
    thumbnail_dir = thumbnail_dir or os.path.join(data_dir, "thumbnails")

    settings = SettingsStore(os.path.join(data_dir, "settings.json"))
    registry = ContentRegistry(os.path.join(data_dir, "medium.json"), media_dir)
    messages = MessageStore(os.path.join(data_dir, "messages"))
    polls = PollStore(os.path.join(data_dir, "polls"))
    thumbnails = ThumbnailCache(
        thumbnail_dir,
        CacheResetMarker(clock),
        width=thumbnail_width,
        quality=thumbnail_quality,
        ffmpeg_path=ffmpeg_path,
        placeholder=puzzle_placeholder,
    )
    if cache_ttl is None:
        response_cache = ResponseCache(clock=clock)
    else:
        response_cache = ResponseCache(ttl=cache_ttl, clock=clock)
    pipeline = ContentPipeline(registry, polls, thumbnails, messages, response_cache)

    return AdventCalendar(
        data_dir,
        media_dir,
        thumbnail_dir,
        settings,
        registry,
        messages,
        polls,
        thumbnails,
        response_cache,
        pipeline,
        clock=clock,
    )
