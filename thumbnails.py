# Vorschaubilder für Türchen-Inhalte

import logging
import os
import shutil
import subprocess

from PIL import Image, ImageDraw, UnidentifiedImageError

from errors import StorageError, TranscodeFailure
from storage import delete_file, ensure_directory

THUMBNAIL_TYPES = ("image", "video", "gif", "puzzle")
FFMPEG_TIMEOUT = 30


def thumbnail_name(filename):
    base = os.path.splitext(os.path.basename(filename))[0]
    return f"thumb_{base}.jpg"


def is_valid_image(path):
    if not os.path.isfile(path):
        return False
    try:
        with Image.open(path) as img:
            img.verify()
        with Image.open(path) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError):
        return False
    return width > 0 and height > 0


class CacheResetMarker:
    """Zeitstempel der letzten Cache-Leerung (Cache-Buster für Clients)."""

    def __init__(self, clock):
        self.clock = clock
        self.timestamp = int(clock() * 1000)

    def bump(self):
        self.timestamp = max(int(self.clock() * 1000), self.timestamp + 1)
        return self.timestamp


class ThumbnailCache:
    def __init__(self, directory, reset_marker, width=500, quality=85, ffmpeg_path=None, placeholder=None):
        self.directory = directory
        self.reset_marker = reset_marker
        self.width = width
        self.quality = quality
        self.ffmpeg_path = ffmpeg_path
        self.placeholder = placeholder

    def path_for(self, filename):
        return os.path.join(self.directory, thumbnail_name(filename))

    def url_for(self, thumbnail_path):
        """URL mit Cache-Buster aus Reset-Zeitstempel und Dateialter.

        Ein ersetztes Türchen behält ``thumb_{tuer}.jpg``, bekommt über die
        Änderungszeit aber trotzdem eine neue URL.
        """
        version = str(self.reset_marker.timestamp)
        try:
            version += f"-{os.stat(thumbnail_path).st_mtime_ns // 1000000}"
        except OSError:
            pass
        return f"/thumbnails/{os.path.basename(thumbnail_path)}?v={version}"

    def generate(self, file_path, content_type):
        """Liefert den Pfad des Vorschaubilds oder ``None``.

        Fehler bei der Erzeugung führen nie zum Abbruch der Anfrage.
        """
        if content_type not in THUMBNAIL_TYPES:
            return None

        thumbnail_path = self.path_for(file_path)
        if is_valid_image(thumbnail_path):
            logging.debug("Verwende existierendes Thumbnail: %s", thumbnail_path)
            return thumbnail_path

        logging.info("Generiere neues Thumbnail für %s (Typ %s)", os.path.basename(file_path), content_type)
        try:
            ensure_directory(self.directory)
            if content_type == "puzzle":
                self._puzzle_placeholder(thumbnail_path)
            elif content_type in ("video", "gif"):
                self._frame_thumbnail(file_path, thumbnail_path)
            else:
                self._resize(file_path, thumbnail_path)
        except TranscodeFailure as exc:
            logging.error("Fehler bei der Thumbnail-Generierung für %s: %s", file_path, exc)
            delete_file(thumbnail_path)
            return None

        return thumbnail_path

    def _resize(self, source_path, thumbnail_path):
        try:
            with Image.open(source_path) as img:
                img.seek(0)
                width, height = img.size
                target_height = max(1, round(self.width * ((height or 500) / (width or 500))))
                resized = img.convert("RGB").resize((self.width, target_height))
                resized.save(thumbnail_path, "JPEG", quality=self.quality)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise TranscodeFailure(f"Bild konnte nicht verkleinert werden: {exc}") from exc

    def _frame_thumbnail(self, source_path, thumbnail_path):
        ffmpeg = self.ffmpeg_path or shutil.which("ffmpeg")
        if not ffmpeg:
            raise TranscodeFailure("FFmpeg nicht konfiguriert, überspringe Video/GIF-Thumbnail")

        temp_path = thumbnail_path.replace(".jpg", "_temp.jpg")
        cmd = [
            ffmpeg, "-y",
            "-ss", "00:00:01.000",
            "-i", source_path,
            "-frames:v", "1",
            temp_path,
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=FFMPEG_TIMEOUT)
            if result.returncode != 0 or not os.path.exists(temp_path):
                # kurze Clips: erstes Bild statt Sekunde 1
                cmd[cmd.index("-ss"):cmd.index("-ss") + 2] = []
                subprocess.run(cmd, check=True, capture_output=True, timeout=FFMPEG_TIMEOUT)
            self._resize(temp_path, thumbnail_path)
        except (subprocess.SubprocessError, OSError) as exc:
            raise TranscodeFailure(f"FFmpeg-Fehler: {exc}") from exc
        finally:
            delete_file(temp_path)

    def _puzzle_placeholder(self, thumbnail_path):
        if self.placeholder and os.path.isfile(self.placeholder):
            try:
                shutil.copyfile(self.placeholder, thumbnail_path)
                return
            except OSError as exc:
                raise TranscodeFailure(f"Rätsel-Platzhalter konnte nicht kopiert werden: {exc}") from exc

        # ohne Vorlage: schlichtes Platzhalterbild
        try:
            img = Image.new("RGB", (self.width, self.width), "#c1272d")
            draw = ImageDraw.Draw(img)
            step = max(self.width // 4, 1)
            for offset in range(step, self.width, step):
                draw.line([(offset, 0), (offset, self.width)], fill="#ffffff", width=3)
                draw.line([(0, offset), (self.width, offset)], fill="#ffffff", width=3)
            img.save(thumbnail_path, "JPEG", quality=self.quality)
        except OSError as exc:
            raise TranscodeFailure(f"Rätsel-Platzhalter konnte nicht erzeugt werden: {exc}") from exc

    def invalidate(self, filename):
        try:
            removed = delete_file(self.path_for(filename))
        except StorageError:
            return False
        if removed:
            logging.info("Thumbnail gelöscht: %s", thumbnail_name(filename))
        return removed

    def clear_all(self):
        removed = 0
        if os.path.isdir(self.directory):
            for filename in os.listdir(self.directory):
                if filename.startswith("thumb_") and filename.endswith(".jpg"):
                    if delete_file(os.path.join(self.directory, filename)):
                        removed += 1
        timestamp = self.reset_marker.bump()
        logging.info("Thumbnail-Cache geleert (%s Dateien), neuer Zeitstempel %s", removed, timestamp)
        return timestamp
