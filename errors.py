# Fehlerklassen für den Adventskalender

import logging
import uuid


class AdventError(Exception):
    """Basisklasse aller fachlichen Fehler des Kalenders."""

    status_code = 500

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message


class ContentError(AdventError):
    """Ungültige oder fehlende Angaben bei einer Admin-Änderung."""

    status_code = 400

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


class NotFoundError(AdventError):
    status_code = 404


class NotYetAvailableError(AdventError):
    """Das Türchen ist laut Datumsregel noch nicht freigegeben.

    Die Einzelansicht antwortet mit 403, Umfragen und Medien mit 423.
    """

    status_code = 423

    def __init__(self, message="Dieses Türchen ist noch nicht verfügbar.", status_code=None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class TranscodeFailure(AdventError):
    pass


class StorageError(AdventError):
    pass


def log_and_sanitize_error(error, context, user_message=None):
    """Protokolliert den vollständigen Fehler und liefert eine neutrale Meldung.

    Gibt ``(meldung, fehler_id)`` zurück. Die Fehler-ID erscheint in beiden,
    damit sich Clientmeldung und Logeintrag zuordnen lassen.
    """
    error_id = str(uuid.uuid4())[:8]
    logging.error(
        "%s fehlgeschlagen [%s]: %s: %s",
        context,
        error_id,
        type(error).__name__,
        error,
        exc_info=error,
    )
    if user_message:
        sanitized = f"{user_message} (Fehler-ID: {error_id})"
    else:
        sanitized = f"{context} fehlgeschlagen. Bitte später erneut versuchen. (Fehler-ID: {error_id})"
    return sanitized, error_id
