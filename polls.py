# Umfragen: Fragen/Antworten pro Türchen und die abgegebenen Stimmen

import logging
import os

from errors import NotFoundError
from storage import JsonDocument, ensure_directory


class PollStore:
    """Zwei JSON-Dokumente: Umfragedefinitionen und Stimmen.

    Stimmen pro Türchen: ``{"votes": {option: anzahl}, "voters": {user_id: option}}``.
    Jede Nutzer-ID darf pro Türchen nur einmal abstimmen.
    """

    def __init__(self, directory):
        self.directory = directory
        self.definitions = JsonDocument(os.path.join(directory, "pollData.json"), dict)
        self.records = JsonDocument(os.path.join(directory, "pollVotes.json"), dict)

    def initialize(self):
        ensure_directory(self.directory)
        self.definitions.initialize()
        self.records.initialize()

    def create_poll(self, door, question, options):
        key = str(int(door))
        poll = {"question": question, "options": list(options)}

        def _define(polls):
            polls[key] = poll

        def _init_votes(records):
            # bestehende Stimmen bleiben erhalten
            if key not in records:
                records[key] = {
                    "votes": {option: 0 for option in poll["options"]},
                    "voters": {},
                }

        self.definitions.update(_define)
        self.records.update(_init_votes)
        logging.info("Umfrage für Türchen %s gespeichert (%s Antworten)", door, len(poll["options"]))
        return poll

    def get_poll(self, door):
        poll = self.definitions.load().get(str(int(door)))
        if not poll:
            return None
        return {"question": poll.get("question", ""), "options": list(poll.get("options", []))}

    def get_all_polls(self):
        return self.definitions.load()

    def get_votes(self, door):
        record = self.records.load().get(str(int(door)))
        if not record:
            return {}
        return dict(record.get("votes", {}))

    def get_user_vote(self, door, user_id):
        if not user_id:
            return None
        record = self.records.load().get(str(int(door)))
        if not record:
            return None
        return record.get("voters", {}).get(str(user_id))

    def vote(self, door, option, user_id):
        """Zählt eine Stimme. Die erste Stimme einer Nutzer-ID gilt.

        Gibt ``{"success", "votes", "userVote"}`` zurück; bei einer zweiten
        Stimme ist ``success`` falsch und der Zählerstand unverändert.
        """
        key = str(int(door))
        user_id = str(user_id)

        with self.records.lock:
            if self.get_poll(door) is None:
                raise NotFoundError("Umfrage nicht gefunden.")

            records = self.records.load()
            record = records.get(key)
            if record is None:
                raise NotFoundError("Umfrage nicht gefunden.")

            previous = record.get("voters", {}).get(user_id)
            if previous is not None:
                logging.debug("Nutzer %s hat für Türchen %s bereits abgestimmt", user_id, door)
                return {"success": False, "votes": dict(record.get("votes", {})), "userVote": previous}

            def _record_vote(all_records):
                entry = all_records[key]
                entry.setdefault("votes", {})
                entry.setdefault("voters", {})
                entry["votes"][option] = entry["votes"].get(option, 0) + 1
                entry["voters"][user_id] = option
                return dict(entry["votes"])

            votes = self.records.update(_record_vote)

        logging.debug("Stimme für Türchen %s gezählt: %s", door, option)
        return {"success": True, "votes": votes, "userVote": option}

    def delete_poll(self, door):
        key = str(int(door))

        def _remove(document):
            return document.pop(key, None) is not None

        removed = False
        if self.definitions.exists():
            removed = self.definitions.update(_remove)
        if self.records.exists():
            removed = self.records.update(_remove) or removed
        if removed:
            logging.info("Umfrage für Türchen %s gelöscht", door)
        return removed
