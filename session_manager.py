import threading

from engine_errors import SessionNotFoundError


class SessionManager:
    """
    Registry of live sessions keyed by id.

    Each session gets its own lock, so at most one mutating call runs per
    session id while different sessions proceed in parallel.
    """

    def __init__(self, engine):
        self.engine = engine
        self._sessions = {}
        self._locks = {}
        self._registry_lock = threading.Lock()

    def __len__(self):
        with self._registry_lock:
            return len(self._sessions)

    def _entry(self, session_id):
        with self._registry_lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            return session, self._locks[session_id]

    def start(self, session_id=None):
        session = self.engine.new_session(session_id)
        with self._registry_lock:
            self._sessions[session.session_id] = session
            self._locks[session.session_id] = threading.Lock()
        return self.engine.current_turn(session)

    def get(self, session_id):
        session, _ = self._entry(session_id)
        return session

    def choose_ai_gate(self, session_id, choice):
        session, lock = self._entry(session_id)
        with lock:
            return self.engine.choose_ai_gate(session, choice)

    def answer(self, session_id, tag_key, value):
        session, lock = self._entry(session_id)
        with lock:
            return self.engine.answer(session, tag_key, value)

    def back(self, session_id):
        session, lock = self._entry(session_id)
        with lock:
            return self.engine.back(session)

    def current_turn(self, session_id):
        session, lock = self._entry(session_id)
        with lock:
            return self.engine.current_turn(session)

    def fail_list(self, session_id):
        session, lock = self._entry(session_id)
        with lock:
            return self.engine.fail_list(session)

    def close(self, session_id):
        with self._registry_lock:
            if session_id not in self._sessions:
                raise SessionNotFoundError(session_id)
            del self._sessions[session_id]
            del self._locks[session_id]
