class EngineError(Exception):
    """Base class for every error the elimination engine raises on purpose."""


class ValidationError(EngineError):
    """Malformed answer value, unknown tag key, or an answer bound to the wrong question."""


class InvalidStateError(EngineError):
    pass


class NoHistoryError(EngineError):
    pass


class SessionNotFoundError(EngineError):
    def __init__(self, session_id):
        super().__init__(f"Unknown session id: {session_id}")
        self.session_id = session_id


class EmptyCandidatePoolError(EngineError):
    """The AI gate filter removed every item. Not the same thing as a FAIL_LIST outcome."""


class DataQualityError(EngineError):
    """No tag is left that can split the pool while the engine is still unsure."""
