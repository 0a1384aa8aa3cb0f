import json
import os
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field


SLO_TARGETS = {
    "session_success_rate": 0.8,
    "session_p95_questions": 20.0,
    "catalog_success_rate": 0.99,
}

ERROR_BUDGET_TARGETS = {
    "reveal_miss_ratio": 0.25,
}

# dropped from structured log lines; they can hold one entry per catalog item
BULKY_KEYS = ("weights_before", "weights_after")


def _p95(values):
    ordered = sorted(values)
    if not ordered:
        return 0.0
    index = min(len(ordered) - 1, int(round(0.95 * (len(ordered) - 1))))
    return float(ordered[index])


@dataclass
class RuntimeObservability:
    """Engine observer that counts events and prints them as JSON lines when enabled."""

    structured_logs: bool = field(default_factory=lambda: os.getenv("ELIM_STRUCTURED_LOGS", "0") == "1")
    event_counts: dict = field(default_factory=lambda: defaultdict(int))
    sessions_success: int = 0
    sessions_failed: int = 0
    question_counts: list = field(default_factory=list)
    failure_reasons: dict = field(default_factory=lambda: defaultdict(int))
    reveals_total: int = 0
    reveal_misses: int = 0
    catalog_calls: int = 0
    catalog_failures: int = 0
    catalog_latencies_ms: list = field(default_factory=list)
    _lock: object = field(default_factory=threading.Lock, repr=False, compare=False)

    def _emit(self, payload):
        if self.structured_logs:
            print(json.dumps(payload, sort_keys=True, default=str))

    def __call__(self, event, payload):
        self.record_event(event, payload)

    def record_event(self, event, payload):
        with self._lock:
            self.event_counts[event] += 1
            if event == "session_terminal":
                self.question_counts.append(int(payload.get("question_count", 0)))
                if payload.get("outcome") == "SUCCESS":
                    self.sessions_success += 1
                else:
                    self.sessions_failed += 1
                    self.failure_reasons[payload.get("failure_reason") or "UNKNOWN"] += 1
            elif event == "reveal_resolved":
                self.reveals_total += 1
                if not payload.get("correct"):
                    self.reveal_misses += 1

        line = {key: value for key, value in payload.items() if key not in BULKY_KEYS}
        line.update({"event": event, "ts": time.time()})
        self._emit(line)

    def record_catalog_call(self, success, latency_ms, status_code=None, error_type=None):
        with self._lock:
            self.catalog_calls += 1
            if not success:
                self.catalog_failures += 1
            self.catalog_latencies_ms.append(float(latency_ms))
        self._emit(
            {
                "event": "catalog_fetch",
                "ts": time.time(),
                "success": bool(success),
                "latency_ms": round(float(latency_ms), 3),
                "status_code": status_code,
                "error_type": error_type,
            }
        )

    def summary(self):
        sessions = self.sessions_success + self.sessions_failed
        success_rate = (self.sessions_success / sessions) if sessions else 1.0
        p95_questions = _p95(self.question_counts)
        avg_questions = (sum(self.question_counts) / len(self.question_counts)) if self.question_counts else 0.0
        reveal_miss_ratio = (self.reveal_misses / self.reveals_total) if self.reveals_total else 0.0
        catalog_success_rate = (
            (self.catalog_calls - self.catalog_failures) / self.catalog_calls if self.catalog_calls else 1.0
        )

        return {
            "sessions_total": sessions,
            "sessions_success": self.sessions_success,
            "sessions_failed": self.sessions_failed,
            "success_rate": success_rate,
            "avg_questions": avg_questions,
            "p95_questions": p95_questions,
            "reveals_total": self.reveals_total,
            "reveal_precision": 1.0 - reveal_miss_ratio if self.reveals_total else 1.0,
            "reveal_miss_ratio": reveal_miss_ratio,
            "failure_reasons": dict(self.failure_reasons),
            "catalog_calls": self.catalog_calls,
            "catalog_p95_latency_ms": _p95(self.catalog_latencies_ms),
            "event_counts": dict(self.event_counts),
            "slo_targets": dict(SLO_TARGETS),
            "error_budget_targets": dict(ERROR_BUDGET_TARGETS),
            "slo_pass": {
                "session_success_rate": success_rate >= SLO_TARGETS["session_success_rate"],
                "session_p95_questions": p95_questions <= SLO_TARGETS["session_p95_questions"],
                "catalog_success_rate": catalog_success_rate >= SLO_TARGETS["catalog_success_rate"],
                "reveal_miss_ratio": reveal_miss_ratio <= ERROR_BUDGET_TARGETS["reveal_miss_ratio"],
            },
        }


@dataclass
class EventTrace:
    """Accumulates (event, payload) pairs for debug panels and tests."""

    events: list = field(default_factory=list)

    def __call__(self, event, payload):
        self.events.append((event, payload))

    def of(self, event):
        return [payload for name, payload in self.events if name == event]

    def clear(self):
        self.events.clear()


def fan_out(*observers):
    """Combine several observers into one callable; None entries are skipped."""
    active = [observer for observer in observers if observer is not None]
    if not active:
        return None
    if len(active) == 1:
        return active[0]

    def _observer(event, payload):
        for observer in active:
            observer(event, payload)

    return _observer
