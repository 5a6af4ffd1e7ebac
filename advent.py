# Erik Schauer, DO1FFE, do1ffe@darc.de
# Adventskalender Programm mit Webserver: 24 Türchen mit Text, Bildern, Videos, Umfragen, Rätseln und Countdowns
# Erstelldatum: 28.11.2023

import functools
import json
import logging
import os
import threading

from flask import (
    Flask,
    jsonify,
    request,
    send_from_directory,
    session,
)
from flask_wtf import CSRFProtect
from flask_wtf.csrf import CSRFError, generate_csrf
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash, generate_password_hash

from content import ClientDoorHints, get_mime_type
from doors import build_calendar
from errors import (
    AdventError,
    ContentError,
    NotFoundError,
    NotYetAvailableError,
    StorageError,
    log_and_sanitize_error,
)
from mutations import DOOR_COUNT, UploadRequest
from timing import get_local_datetime

# Logging-Konfiguration
logging.basicConfig(filename='debug.log', level=logging.DEBUG,
                    format='%(asctime)s %(levelname)s: %(message)s',
                    datefmt='%Y-%m-%d %H:%M:%S')

# Debugging-Flag
DEBUG = True

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DATA_DIR = os.environ.get("ADVENT_DATA_DIR", os.path.join(BASE_DIR, "data"))
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin")
FFMPEG_PATH = os.environ.get("FFMPEG_PATH") or None
THUMBNAIL_WIDTH = int(os.environ.get("THUMBNAIL_WIDTH", "500"))
THUMBNAIL_QUALITY = int(os.environ.get("THUMBNAIL_QUALITY", "85"))
MAX_FILE_SIZE = int(os.environ.get("MAX_FILE_SIZE", "52428800"))
# ohne Angabe wird der Rätsel-Platzhalter gezeichnet
PUZZLE_PLACEHOLDER = os.environ.get("PUZZLE_PLACEHOLDER") or None

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY", "please-change-me")
app.config["MAX_CONTENT_LENGTH"] = MAX_FILE_SIZE
csrf = CSRFProtect()
csrf.init_app(app)

CSRF_ERROR_MESSAGE = (
    "Ungültiges oder fehlendes Sicherheits-Token. Bitte lade die Seite neu und "
    "versuche es erneut."
)

kalender = build_calendar(
    DATA_DIR,
    thumbnail_width=THUMBNAIL_WIDTH,
    thumbnail_quality=THUMBNAIL_QUALITY,
    ffmpeg_path=FFMPEG_PATH,
    puzzle_placeholder=PUZZLE_PLACEHOLDER,
)
init_lock = threading.Lock()


def error_response(message, status_code):
    response = jsonify({"error": message})
    response.status_code = status_code
    return response


@app.errorhandler(CSRFError)
def handle_csrf_error(exc):
    logging.warning("CSRF-Validierung fehlgeschlagen: %s", exc.description)
    return error_response(CSRF_ERROR_MESSAGE, 400)


@app.errorhandler(ContentError)
def handle_content_error(exc):
    return error_response(exc.reason, exc.status_code)


@app.errorhandler(NotFoundError)
@app.errorhandler(NotYetAvailableError)
def handle_lookup_error(exc):
    return error_response(exc.message, exc.status_code)


@app.errorhandler(StorageError)
def handle_storage_error(exc):
    message, _ = log_and_sanitize_error(exc, "Speicherzugriff", "Interner Fehler")
    return error_response(message, 500)


@app.errorhandler(Exception)
def handle_unexpected_error(exc):
    if isinstance(exc, HTTPException):
        return error_response(exc.description, exc.code)
    if isinstance(exc, AdventError):
        message, _ = log_and_sanitize_error(exc, request.path)
        return error_response(message, exc.status_code)
    message, _ = log_and_sanitize_error(exc, f"Anfrage {request.path}", "Interner Fehler")
    return error_response(message, 500)


def init_admin_credentials():
    document = kalender.credentials
    with document.lock:
        if document.exists():
            return
        document.save({
            "username": ADMIN_USERNAME,
            "password_hash": generate_password_hash(ADMIN_PASSWORD),
        })
    logging.info("Admin-Zugangsdaten angelegt für %s", ADMIN_USERNAME)


def verify_admin_credentials(username, password):
    if not username or not password:
        return False
    credentials = kalender.credentials.load()
    if credentials.get("username") != username:
        return False
    password_hash = credentials.get("password_hash")
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def is_admin_session():
    return bool(session.get("admin"))


def admin_required(view):
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if not is_admin_session():
            if DEBUG:
                logging.debug("Admin-Zugriff verweigert für %s", request.path)
            return error_response("Nicht angemeldet.", 401)
        return view(*args, **kwargs)

    return wrapped


@app.before_request
def ensure_initialized():
    if kalender.initialized:
        return
    with init_lock:
        if kalender.initialized:
            return
        init_admin_credentials()
        kalender.initialize()
    if DEBUG:
        logging.debug("Kalender initialisiert in %s", kalender.data_dir)


def check_door_number(tag):
    if tag < 1 or tag > DOOR_COUNT:
        raise ContentError(f"Ungültige Türchennummer: {tag}")


def read_door_hints():
    try:
        return ClientDoorHints.from_query(request.args.get("doorStates"))
    except ValueError as exc:
        raise ContentError("doorStates ist kein gültiges JSON-Objekt.") from exc


# Öffentliche Schnittstellen

@app.route('/api', methods=['GET'])
def alle_tuerchen():
    heute = get_local_datetime().date()
    hints = read_door_hints()
    listing, cache_hit = kalender.list_doors(heute, hints)
    if DEBUG:
        logging.debug("Türchen-Liste für %s (Cache: %s)", heute, "ja" if cache_hit else "nein")

    response = jsonify(listing.snapshot)
    response.headers["X-Cache"] = "HIT" if cache_hit else "MISS"
    response.headers["X-Advent-Day"] = str(kalender.day_number(heute))
    if hints:
        response.headers["Cache-Control"] = "no-store"
    else:
        response.headers["Cache-Control"] = f"public, max-age={kalender.response_cache.ttl}"
    return response


@app.route('/api/doors/status', methods=['GET'])
def tuerchen_status():
    heute = get_local_datetime().date()
    response = jsonify(kalender.door_status(heute))
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    return response


@app.route('/api/doors/<int:tag>', methods=['GET'])
def oeffne_tuerchen(tag):
    check_door_number(tag)
    heute = get_local_datetime().date()
    if DEBUG:
        logging.debug("Öffne Türchen %s aufgerufen - Datum: %s", tag, heute)
    door = kalender.get_door(tag, heute, read_door_hints())
    response = jsonify(door)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    return response


@app.route('/api/poll/<int:tag>', methods=['GET'])
def umfrage(tag):
    check_door_number(tag)
    heute = get_local_datetime().date()
    return jsonify(kalender.get_poll(tag, heute, request.args.get("userId")))


@app.route('/api/poll/<int:tag>/vote', methods=['POST'])
@csrf.exempt
def umfrage_abstimmen(tag):
    check_door_number(tag)
    body = request.get_json(silent=True) or {}
    option = body.get("option")
    user_id = body.get("userId")
    if not isinstance(option, str) or not option or not user_id:
        raise ContentError("Antwort oder Nutzer-ID fehlt.")

    heute = get_local_datetime().date()
    result = kalender.vote(tag, heute, option, str(user_id))
    if DEBUG:
        logging.debug("Abstimmung Türchen %s: %s (%s)", tag, option, "gezählt" if result["success"] else "doppelt")
    return jsonify(result)


@app.route('/media/<int:index>', methods=['GET'])
def medium(index):
    heute = get_local_datetime().date()
    filename = kalender.media_file(index, heute)
    if DEBUG:
        logging.debug("Medium %s ausgeliefert: %s", index, filename)
    return send_from_directory(kalender.media_dir, filename, mimetype=get_mime_type(filename))


@app.route('/thumbnails/<filename>', methods=['GET'])
def vorschaubild(filename):
    response = send_from_directory(kalender.thumbnail_dir, filename, mimetype="image/jpeg")
    response.headers["Cache-Control"] = "public, max-age=31536000, immutable"
    return response


@app.route('/api/settings', methods=['GET'])
def einstellungen():
    return jsonify(kalender.settings.get())


# Adminbereich

@app.route('/api/admin/login', methods=['POST'])
@csrf.exempt
def admin_login():
    body = request.get_json(silent=True) or request.form
    username = (body.get("username") or "").strip()
    password = body.get("password") or ""

    if not verify_admin_credentials(username, password):
        logging.warning("Fehlgeschlagener Admin-Login für %s", username or "(leer)")
        return error_response("Benutzername oder Passwort sind nicht korrekt.", 401)

    session["admin"] = username
    if DEBUG:
        logging.debug("Admin %s angemeldet", username)
    return jsonify({"success": True, "csrfToken": generate_csrf()})


@app.route('/api/admin/logout', methods=['POST'])
@csrf.exempt
def admin_logout():
    session.clear()
    return jsonify({"success": True})


@app.route('/api/admin/verify', methods=['GET'])
def admin_verify():
    if not is_admin_session():
        return error_response("Nicht angemeldet.", 401)
    return jsonify({"authenticated": True, "username": session["admin"], "csrfToken": generate_csrf()})


@app.route('/api/admin/doors', methods=['GET'])
@admin_required
def admin_tuerchen():
    response = jsonify(kalender.admin_doors())
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    return response


def read_poll_options(form):
    raw = form.get("options")
    if raw is not None and raw.strip().startswith("["):
        try:
            options = json.loads(raw)
        except ValueError as exc:
            raise ContentError("Antwortmöglichkeiten konnten nicht gelesen werden.") from exc
        if not isinstance(options, list):
            raise ContentError("Antwortmöglichkeiten müssen eine Liste sein.")
        return [str(option) for option in options]
    return form.getlist("options")


@app.route('/api/admin/upload/<int:tag>', methods=['POST'])
@admin_required
def admin_upload(tag):
    check_door_number(tag)
    form = request.form
    content_type = (form.get("contentType") or "").strip()

    upload_file = request.files.get("file")
    file_name = None
    file_data = None
    if upload_file is not None and upload_file.filename:
        file_name = upload_file.filename
        file_data = upload_file.read()

    upload = UploadRequest(
        content_type=content_type,
        text=form.get("textContent"),
        file_name=file_name,
        file_data=file_data,
        question=form.get("question"),
        options=read_poll_options(form) if content_type == "poll" else None,
        countdown_date=form.get("countdownDate"),
        countdown_text=form.get("countdownText") or "",
        url=form.get("url"),
        message=form.get("message"),
    )

    kalender.pipeline.upload(tag, upload)
    if DEBUG:
        logging.debug("Upload für Türchen %s (%s) gespeichert", tag, content_type)
    return jsonify({"success": True})


@app.route('/api/admin/content/<int:tag>', methods=['DELETE'])
@admin_required
def admin_delete(tag):
    check_door_number(tag)
    kalender.pipeline.delete(tag)
    return jsonify({"success": True})


@app.route('/api/admin/settings', methods=['GET', 'POST'])
@admin_required
def admin_einstellungen():
    if request.method == 'GET':
        return jsonify(kalender.settings.get())

    body = request.get_json(silent=True) or request.form
    settings = kalender.save_settings(
        body.get("startDate"),
        body.get("title"),
        body.get("description"),
    )
    return jsonify({"success": True, "settings": settings})


@app.route('/api/admin/polls', methods=['GET'])
@admin_required
def admin_umfragen():
    return jsonify(kalender.polls.get_all_polls())


@app.route('/api/admin/cache', methods=['GET', 'POST'])
@admin_required
def admin_cache():
    if request.method == 'GET':
        return jsonify({"timestamp": kalender.thumbnails.reset_marker.timestamp})

    timestamp = kalender.clear_caches()
    return jsonify({"success": True, "timestamp": timestamp})


if __name__ == '__main__':
    kalender.initialize()
    init_admin_credentials()

    if DEBUG: logging.debug("Starte Flask-App")
    app.run(host='0.0.0.0', port=8087, debug=DEBUG)
