import json
import time

import requests

from .config import (
    CATALOG_API_KEY,
    CATALOG_DEBUG,
    CATALOG_MAX_RETRIES,
    CATALOG_PATH,
    CATALOG_RETRY_BACKOFF_SEC,
    CATALOG_TIMEOUT_SEC,
    CATALOG_URL,
)
from .security import redact_sensitive
from .snapshot import CatalogSnapshot, EvidenceClass, Item, Tag


def _log_catalog(message):
    if CATALOG_DEBUG:
        print(f"| CATALOG (Debug): {redact_sensitive(message)}")


def _first(record, *keys, default=None):
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default


def _parse_tag(record):
    key = _first(record, "tagKey", "tag_key", "key")
    if not key:
        raise ValueError(f"Tag record without a key: {record!r}")
    evidence = str(_first(record, "evidenceClass", "evidence_class", "tagType", default="OFFICIAL")).upper()
    rank = _first(record, "rank")
    return Tag(
        key=str(key),
        display_name=str(_first(record, "displayName", "display_name", default=key)),
        evidence_class=EvidenceClass(evidence),
        rank=str(rank).upper() if rank else None,
        question_text=_first(record, "questionText", "question_text"),
    )


def _parse_item_tags(raw_tags):
    # Either {"tagKey": confidence|null} or [{"tagKey": ..., "derivedConfidence": ...}]
    if isinstance(raw_tags, dict):
        return {str(k): (None if v is None else float(v)) for k, v in raw_tags.items()}
    tags = {}
    for entry in raw_tags or []:
        if isinstance(entry, str):
            tags[entry] = None
            continue
        key = _first(entry, "tagKey", "tag_key", "key")
        confidence = _first(entry, "derivedConfidence", "derived_confidence", "confidence")
        tags[str(key)] = None if confidence is None else float(confidence)
    return tags


def _parse_item(record):
    item_id = _first(record, "itemId", "item_id", "workId", "id")
    if item_id is None:
        raise ValueError(f"Item record without an id: {record!r}")
    classification = str(_first(record, "classification", "aiClassification", default="UNKNOWN")).upper()
    return Item(
        item_id=str(item_id),
        title=str(_first(record, "title", default=item_id)),
        author=str(_first(record, "author", "authorName", default="")),
        popularity_base=float(_first(record, "popularityBase", "popularity_base", default=0.0)),
        popularity_play_bonus=float(_first(record, "popularityPlayBonus", "popularity_play_bonus", default=0.0)),
        classification=classification,
        tags=_parse_item_tags(_first(record, "tags", default=[])),
    )


def parse_snapshot(payload):
    if not isinstance(payload, dict):
        raise ValueError("Catalog snapshot payload must be a JSON object")
    items = [_parse_item(record) for record in payload.get("items", [])]
    if not items:
        raise ValueError("Catalog snapshot contains no items")
    tags = [_parse_tag(record) for record in payload.get("tags", [])]
    return CatalogSnapshot(items, tags, version=str(payload.get("version", "")))


def load_snapshot_file(path=None):
    path = path or CATALOG_PATH
    if not path:
        raise ValueError("No catalog path given and ELIM_CATALOG_PATH is unset")
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    snapshot = parse_snapshot(payload)
    _log_catalog(f"loaded snapshot path='{path}' items={len(snapshot)} tags={len(snapshot.tags)}")
    return snapshot


def fetch_snapshot(url=None, observability=None):
    """
    Fetch a catalog snapshot over HTTP.

    Retries transient failures up to CATALOG_MAX_RETRIES times, honouring
    Retry-After on 429 responses. The last error is re-raised when every
    attempt fails.
    """
    url = url or CATALOG_URL
    if not url:
        raise ValueError("No catalog URL given and ELIM_CATALOG_URL is unset")

    headers = {"Accept": "application/json"}
    if CATALOG_API_KEY:
        headers["Authorization"] = f"Bearer {CATALOG_API_KEY}"

    attempts = max(1, CATALOG_MAX_RETRIES)
    for attempt in range(1, attempts + 1):
        started = time.perf_counter()
        try:
            res = requests.get(url, headers=headers, timeout=CATALOG_TIMEOUT_SEC)
            res.raise_for_status()
            snapshot = parse_snapshot(res.json())
            if observability is not None:
                observability.record_catalog_call(
                    success=True,
                    latency_ms=(time.perf_counter() - started) * 1000.0,
                    status_code=res.status_code,
                )
            _log_catalog(f"fetched snapshot url='{url}' attempt={attempt} items={len(snapshot)}")
            return snapshot
        except (requests.exceptions.RequestException, ValueError) as ex:
            status_code = None
            wait_seconds = CATALOG_RETRY_BACKOFF_SEC * attempt
            if isinstance(ex, requests.exceptions.HTTPError) and ex.response is not None:
                status_code = ex.response.status_code
                if status_code == 429:
                    retry_after = ex.response.headers.get("Retry-After", "")
                    try:
                        wait_seconds = float(retry_after)
                    except ValueError:
                        wait_seconds = min(2 ** attempt, 20)

            if observability is not None:
                observability.record_catalog_call(
                    success=False,
                    latency_ms=(time.perf_counter() - started) * 1000.0,
                    status_code=status_code,
                    error_type=type(ex).__name__,
                )
            _log_catalog(f"fetch failure url='{url}' attempt={attempt}/{attempts}: {type(ex).__name__}: {ex}")

            if attempt >= attempts:
                raise
            time.sleep(wait_seconds)


class FakeCatalogBackend:
    """Serves queued payloads (or raises queued exceptions) in place of the HTTP catalog."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if not self.responses:
            raise RuntimeError("FakeCatalogBackend has no queued responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, CatalogSnapshot):
            return response
        return parse_snapshot(response)
