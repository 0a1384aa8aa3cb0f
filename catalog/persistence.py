import json
import os
import threading
import time
from collections import defaultdict

from .config import OUTCOME_LOG_PATH


class NullPersistence:
    """Drops every write. Used by the simulation harness so trials never touch popularity."""

    def record_session_outcome(self, session_id, outcome):
        return None

    def bump_popularity(self, item_id, amount):
        return None


class InMemoryPersistence:
    def __init__(self):
        self.outcomes = []
        self.bonuses = defaultdict(float)
        self._lock = threading.Lock()

    def record_session_outcome(self, session_id, outcome):
        with self._lock:
            self.outcomes.append({"session_id": session_id, **dict(outcome)})

    def bump_popularity(self, item_id, amount):
        with self._lock:
            self.bonuses[item_id] += float(amount)


class JsonlPersistence:
    """Appends one JSON line per write so a later catalog refresh can fold the bonuses in."""

    def __init__(self, path=None):
        self.path = path or OUTCOME_LOG_PATH
        self._lock = threading.Lock()

    def _append(self, payload):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(payload, sort_keys=True) + "\n")

    def record_session_outcome(self, session_id, outcome):
        self._append({"event": "session_outcome", "ts": time.time(), "session_id": session_id, **dict(outcome)})

    def bump_popularity(self, item_id, amount):
        self._append({"event": "popularity_bump", "ts": time.time(), "item_id": item_id, "amount": float(amount)})

    def load_bonuses(self):
        bonuses = defaultdict(float)
        if not os.path.exists(self.path):
            return dict(bonuses)
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                if record.get("event") == "popularity_bump":
                    bonuses[record["item_id"]] += float(record["amount"])
        return dict(bonuses)
