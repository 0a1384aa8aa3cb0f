"""
Session state machine for the tag elimination engine.

A session starts at the AI gate, moves through QUIZ / CONFIRM / REVEAL
questions and ends in SUCCESS or FAIL_LIST. Every answer pushes a full
snapshot of the pre-answer state onto the session history, so `back()` puts
the session exactly where it was and replaying the same answer reproduces
the same downstream state.

The engine itself holds no per-session state: callers pass the Session in,
and SessionManager serialises calls per session id.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from candidate_pool import CandidatePool
from catalog.persistence import NullPersistence
from catalog.snapshot import AiGateChoice
from engine_config import ENGINE_DEBUG, EngineConfig
from engine_errors import DataQualityError, InvalidStateError, NoHistoryError, ValidationError
from inference.update_cycle import evaluate_session, run_reveal_penalty_cycle, run_tag_update_cycle
from inference.weight_update import ANSWER_STRENGTH, Answer, parse_answer
from question_selector import FailReason, QuestionKind, QuestionSelector


class Phase(str, Enum):
    AI_GATE = "AI_GATE"
    QUIZ = "QUIZ"
    CONFIRM = "CONFIRM"
    REVEAL = "REVEAL"
    FAIL_LIST = "FAIL_LIST"
    SUCCESS = "SUCCESS"


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAIL_LIST = "FAIL_LIST"


ANSWERABLE_PHASES = {Phase.QUIZ, Phase.CONFIRM, Phase.REVEAL}
TERMINAL_PHASES = {Phase.SUCCESS, Phase.FAIL_LIST}

PHASE_FOR_KIND = {
    QuestionKind.EXPLORE_TAG: Phase.QUIZ,
    QuestionKind.SOFT_CONFIRM: Phase.CONFIRM,
    QuestionKind.HARD_CONFIRM: Phase.CONFIRM,
    QuestionKind.REVEAL: Phase.REVEAL,
}

REVEAL_ANSWERS = {Answer.YES, Answer.NO}


@dataclass(frozen=True)
class HistoryEntry:
    question: object
    answer: Answer
    state: dict


@dataclass(frozen=True)
class FailListEntry:
    item_id: str
    title: str
    author: str
    probability: float


@dataclass
class Session:
    session_id: str
    catalog: object
    created_at: float = field(default_factory=time.time)
    phase: Phase = Phase.AI_GATE
    ai_gate_choice: AiGateChoice = None
    pool: CandidatePool = None
    asked_tag_keys: list = field(default_factory=list)
    history: list = field(default_factory=list)
    question_count: int = 0
    reveal_miss_count: int = 0
    rejected_item_ids: list = field(default_factory=list)
    blocked_reveal_item_id: str = None
    consecutive_no_count: int = 0
    current_question: object = None
    metrics: object = None
    outcome: Outcome = None
    failure_reason: FailReason = None
    failure_detail: str = None

    def capture(self):
        return {
            "phase": self.phase,
            "weights": self.pool.snapshot(),
            "asked_tag_keys": list(self.asked_tag_keys),
            "question_count": self.question_count,
            "reveal_miss_count": self.reveal_miss_count,
            "rejected_item_ids": list(self.rejected_item_ids),
            "blocked_reveal_item_id": self.blocked_reveal_item_id,
            "consecutive_no_count": self.consecutive_no_count,
            "current_question": self.current_question,
            "metrics": self.metrics,
            "outcome": self.outcome,
            "failure_reason": self.failure_reason,
            "failure_detail": self.failure_detail,
        }

    def restore(self, state):
        self.pool.restore(state["weights"])
        self.phase = state["phase"]
        self.asked_tag_keys = list(state["asked_tag_keys"])
        self.question_count = state["question_count"]
        self.reveal_miss_count = state["reveal_miss_count"]
        self.rejected_item_ids = list(state["rejected_item_ids"])
        self.blocked_reveal_item_id = state["blocked_reveal_item_id"]
        self.consecutive_no_count = state["consecutive_no_count"]
        self.current_question = state["current_question"]
        self.metrics = state["metrics"]
        self.outcome = state["outcome"]
        self.failure_reason = state["failure_reason"]
        self.failure_detail = state["failure_detail"]

    def reset_to_gate(self):
        self.phase = Phase.AI_GATE
        self.ai_gate_choice = None
        self.pool = None
        self.asked_tag_keys = []
        self.history = []
        self.question_count = 0
        self.reveal_miss_count = 0
        self.rejected_item_ids = []
        self.blocked_reveal_item_id = None
        self.consecutive_no_count = 0
        self.current_question = None
        self.metrics = None
        self.outcome = None
        self.failure_reason = None
        self.failure_detail = None


@dataclass(frozen=True)
class Turn:
    session_id: str
    phase: Phase
    question_count: int
    question: object = None
    outcome: Outcome = None
    item_id: str = None
    confidence: float = 0.0
    fail_list: tuple = ()
    failure_reason: FailReason = None

    @property
    def is_terminal(self):
        return self.phase in TERMINAL_PHASES

    def as_dict(self):
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "question_count": self.question_count,
            "question": self.question.as_dict() if self.question is not None else None,
            "outcome": self.outcome.value if self.outcome is not None else None,
            "item_id": self.item_id,
            "confidence": self.confidence,
            "fail_list": [entry.__dict__ for entry in self.fail_list],
            "failure_reason": self.failure_reason.value if self.failure_reason is not None else None,
        }


def _is_reveal_marker(tag_key):
    return tag_key is None or tag_key == QuestionKind.REVEAL


class EliminationEngine:
    def __init__(self, catalog, config=None, persistence=None, observer=None):
        self.catalog = catalog
        self.config = config or EngineConfig()
        self.persistence = persistence or NullPersistence()
        self.observer = observer
        self.selector = QuestionSelector(self.config)

    def _log(self, message):
        if ENGINE_DEBUG:
            print(f"| ENGINE (Debug): {message}")

    def _emit(self, event, payload):
        if self.observer is not None:
            self.observer(event, payload)

    def refresh_catalog(self, catalog):
        """New sessions see `catalog`; sessions already running keep the snapshot they pinned."""
        self.catalog = catalog

    def new_session(self, session_id=None):
        return Session(session_id=session_id or uuid.uuid4().hex, catalog=self.catalog)

    def choose_ai_gate(self, session, choice):
        if session.phase is not Phase.AI_GATE:
            raise InvalidStateError(f"AI gate already passed (phase={session.phase.value})")
        try:
            choice = AiGateChoice(str(getattr(choice, "value", choice)).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown AI gate choice: {choice!r}") from None

        session.pool = CandidatePool.from_catalog(session.catalog, choice, self.config)
        session.ai_gate_choice = choice
        evaluate_session(session, self.config, observer=self.observer)
        self._log(f"session={session.session_id} gate={choice.value} pool={len(session.pool)}")
        return self._advance(session)

    def answer(self, session, tag_key, value):
        if session.phase not in ANSWERABLE_PHASES:
            raise InvalidStateError(f"Cannot answer in phase {session.phase.value}")
        answer = parse_answer(value)
        question = session.current_question

        if _is_reveal_marker(tag_key):
            if question.kind is not QuestionKind.REVEAL:
                raise ValidationError("No reveal is pending for this session")
            return self._resolve_reveal(session, answer)

        if question.kind is QuestionKind.REVEAL:
            raise ValidationError("A reveal is pending; answer it with the REVEAL marker")
        if tag_key not in session.catalog.tags:
            raise ValidationError(f"Unknown tag key: {tag_key!r}")
        if tag_key != question.tag_key:
            raise ValidationError(f"Tag {tag_key!r} is not the current question ({question.tag_key!r})")

        session.history.append(HistoryEntry(question=question, answer=answer, state=session.capture()))
        run_tag_update_cycle(session, question, answer, self.config, observer=self.observer)
        session.asked_tag_keys.append(tag_key)
        session.question_count += 1
        session.blocked_reveal_item_id = None

        strength = ANSWER_STRENGTH[answer]
        if strength < 0:
            session.consecutive_no_count += 1
        elif strength > 0:
            session.consecutive_no_count = 0

        self._log(
            f"session={session.session_id} q={session.question_count} tag='{tag_key}' "
            f"answer={answer.value} confidence={session.metrics.confidence:.3f}"
        )
        return self._advance(session)

    def back(self, session):
        if session.phase is Phase.AI_GATE:
            raise NoHistoryError("Nothing to undo before the AI gate")

        if not session.history:
            session.reset_to_gate()
            self._emit("undo", {"session_id": session.session_id, "phase": Phase.AI_GATE.value})
            return self.current_turn(session)

        entry = session.history.pop()
        session.restore(entry.state)
        self._emit(
            "undo",
            {
                "session_id": session.session_id,
                "phase": session.phase.value,
                "question_count": session.question_count,
            },
        )
        return self.current_turn(session)

    def fail_list(self, session):
        if session.pool is None:
            return ()
        rejected = set(session.rejected_item_ids)
        seen_authors = set()
        entries = []
        for item_id, probability in session.pool.ranked():
            if item_id in rejected:
                continue
            item = session.catalog.item(item_id)
            author_key = item.author or f"__item__:{item_id}"
            if author_key in seen_authors:
                continue
            seen_authors.add(author_key)
            entries.append(FailListEntry(item_id=item_id, title=item.title, author=item.author, probability=probability))
            if len(entries) >= self.config.fail_list_n:
                break
        return tuple(entries)

    def current_turn(self, session):
        item_id = None
        if session.current_question is not None:
            item_id = session.current_question.item_id
        elif session.phase is Phase.SUCCESS and session.history:
            item_id = session.history[-1].question.item_id

        return Turn(
            session_id=session.session_id,
            phase=session.phase,
            question_count=session.question_count,
            question=session.current_question,
            outcome=session.outcome,
            item_id=item_id,
            confidence=session.metrics.confidence if session.metrics is not None else 0.0,
            fail_list=self.fail_list(session) if session.phase is Phase.FAIL_LIST else (),
            failure_reason=session.failure_reason,
        )

    def _resolve_reveal(self, session, answer):
        if answer not in REVEAL_ANSWERS:
            raise ValidationError(f"A reveal only accepts YES or NO, got {answer.value}")

        question = session.current_question
        item_id = question.item_id
        session.history.append(HistoryEntry(question=question, answer=answer, state=session.capture()))
        session.question_count += 1

        if answer is Answer.YES:
            session.phase = Phase.SUCCESS
            session.outcome = Outcome.SUCCESS
            session.current_question = None
            self.persistence.bump_popularity(item_id, self.config.play_bonus_on_success)
            self._emit("reveal_resolved", {"session_id": session.session_id, "item_id": item_id, "correct": True})
            self._finish(session, item_id=item_id)
            return self.current_turn(session)

        run_reveal_penalty_cycle(session, item_id, self.config, observer=self.observer)
        if item_id not in session.rejected_item_ids:
            session.rejected_item_ids.append(item_id)
        session.reveal_miss_count += 1
        session.blocked_reveal_item_id = item_id
        self._emit(
            "reveal_resolved",
            {
                "session_id": session.session_id,
                "item_id": item_id,
                "correct": False,
                "reveal_miss_count": session.reveal_miss_count,
            },
        )
        self._log(f"session={session.session_id} reveal miss item='{item_id}' misses={session.reveal_miss_count}")

        if session.reveal_miss_count >= self.config.max_reveal_misses:
            return self._fail(session, FailReason.REVEAL_MISSES)
        return self._advance(session)

    def _advance(self, session):
        try:
            decision = self.selector.select(session)
        except DataQualityError as exc:
            self._log(f"session={session.session_id} data quality: {exc}")
            return self._fail(session, FailReason.NO_USEFUL_QUESTIONS, detail=str(exc))

        if decision.is_terminal:
            return self._fail(session, decision.fail_reason)

        question = decision.question
        session.current_question = question
        session.phase = PHASE_FOR_KIND[question.kind]
        if self.observer is not None:
            self._emit(
                "question_selected",
                {
                    "session_id": session.session_id,
                    "question_index": session.question_count + 1,
                    "question": question.as_dict(),
                    "rationale": decision.rationale,
                },
            )
        return self.current_turn(session)

    def _fail(self, session, reason, detail=None):
        session.phase = Phase.FAIL_LIST
        session.outcome = Outcome.FAIL_LIST
        session.failure_reason = reason
        session.failure_detail = detail
        session.current_question = None
        self._finish(session)
        return self.current_turn(session)

    def _finish(self, session, item_id=None):
        outcome = {
            "outcome": session.outcome.value,
            "item_id": item_id,
            "question_count": session.question_count,
            "reveal_miss_count": session.reveal_miss_count,
            "failure_reason": session.failure_reason.value if session.failure_reason is not None else None,
            "ai_gate_choice": session.ai_gate_choice.value if session.ai_gate_choice is not None else None,
        }
        self.persistence.record_session_outcome(session.session_id, outcome)
        self._emit("session_terminal", {"session_id": session.session_id, **outcome})
        self._log(f"session={session.session_id} terminal {outcome}")
