"""
Review sessions for a playlist transfer.

A session is created by ``SessionService.prepare``, resolves its tracks in a
background task, waits for a human to settle the ambiguous ones, and finally
commits the chosen ids through a PlaylistCommitter. Sessions live in memory
only; a restart loses anything in flight.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Union

from .adapters import ADAPTERS, adapt
from .config import config
from .errors import (
    COMMIT_FAILED,
    INVALID_PAYLOAD,
    MISSING_FIELDS,
    SESSION_NOT_FOUND,
    WRONG_STATE,
    Failure,
    InvalidTransition,
    TransferCancelled,
)
from .executor import BatchProgress, CancellationToken, ItemProgress, ProgressStream
from .matching import ResolutionEngine, partition_results
from .models import CandidateTrack, ResolutionResult, TrackDescriptor

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    PROCESSING = "processing"
    NEEDS_REVIEW = "needs_review"
    READY = "ready"
    REVIEWED = "reviewed"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


TRANSITIONS: Dict[SessionStatus, Set[SessionStatus]] = {
    SessionStatus.PROCESSING: {SessionStatus.NEEDS_REVIEW, SessionStatus.READY, SessionStatus.ERROR},
    SessionStatus.NEEDS_REVIEW: {SessionStatus.REVIEWED, SessionStatus.ERROR},
    SessionStatus.READY: {SessionStatus.EXECUTING, SessionStatus.ERROR},
    SessionStatus.REVIEWED: {SessionStatus.EXECUTING, SessionStatus.ERROR},
    SessionStatus.EXECUTING: {SessionStatus.COMPLETED, SessionStatus.ERROR},
    SessionStatus.COMPLETED: set(),
    SessionStatus.ERROR: set(),
}

IN_FLIGHT = {SessionStatus.PROCESSING, SessionStatus.EXECUTING}


@dataclass
class Decision:
    track_index: int
    action: str
    selected_variant_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Decision":
        """Accepts both snake_case and camelCase keys."""
        index = data.get("track_index", data.get("trackIndex"))
        action = data.get("action")
        if index is None or action not in ("select", "ignore"):
            raise ValueError(f"Malformed decision: {data!r}")
        return cls(
            track_index=int(index),
            action=action,
            selected_variant_id=data.get("selected_variant_id", data.get("selectedVariantId")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_index": self.track_index,
            "action": self.action,
            "selected_variant_id": self.selected_variant_id,
        }


@dataclass
class ReviewSession:
    id: str
    source_service: str
    destination_service: str
    playlist_name: str = ""
    status: SessionStatus = SessionStatus.PROCESSING
    progress: Dict[str, int] = field(default_factory=lambda: {"current": 0, "total": 0})
    auto_matched: List[ResolutionResult] = field(default_factory=list)
    needs_review: List[ResolutionResult] = field(default_factory=list)
    unavailable: List[ResolutionResult] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)
    selected: Dict[int, CandidateTrack] = field(default_factory=dict)
    ignored: Set[int] = field(default_factory=set)
    stats: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    cancel_token: CancellationToken = field(default_factory=CancellationToken, repr=False)
    events: ProgressStream = field(default_factory=ProgressStream, repr=False)

    def transition(self, target: SessionStatus) -> None:
        if target not in TRANSITIONS[self.status]:
            raise InvalidTransition(self.status.value, target.value)
        logger.debug("Session %s: %s -> %s", self.id, self.status.value, target.value)
        self.status = target
        self.updated_at = time.time()

    def fail(self, message: str) -> None:
        if self.status in (SessionStatus.COMPLETED, SessionStatus.ERROR):
            return
        self.error = message
        self.transition(SessionStatus.ERROR)

    def apply_results(self, results: List[ResolutionResult]) -> None:
        buckets = partition_results(results)
        self.auto_matched = buckets["auto_matched"]
        self.needs_review = buckets["needs_review"]
        self.unavailable = buckets["unavailable"]
        self.transition(SessionStatus.NEEDS_REVIEW if self.needs_review else SessionStatus.READY)

    def submit_decisions(self, decisions: List[Decision]) -> Union[List[Decision], Failure]:
        """Apply reviewer decisions; returns the ones that were honored.

        Rejected without touching the session unless it is awaiting review.
        A select whose id is not among that track's candidates is dropped.
        """
        if self.status != SessionStatus.NEEDS_REVIEW:
            return Failure(WRONG_STATE, f"Session is {self.status.value}, not awaiting review")
        applied: List[Decision] = []
        for d in decisions:
            if not 0 <= d.track_index < len(self.needs_review):
                logger.debug("Dropping decision for unknown track index %d", d.track_index)
                continue
            if d.action == "ignore":
                self.ignored.add(d.track_index)
                self.selected.pop(d.track_index, None)
                applied.append(d)
                continue
            candidates = self.needs_review[d.track_index].review_candidates
            chosen = next((c for c in candidates if c.id == d.selected_variant_id), None)
            if chosen is None:
                logger.debug("Dropping select of %r for track %d", d.selected_variant_id, d.track_index)
                continue
            self.selected[d.track_index] = chosen
            self.ignored.discard(d.track_index)
            applied.append(d)
        self.decisions = applied
        self.transition(SessionStatus.REVIEWED)
        return applied

    def commit_ids(self) -> List[str]:
        """Auto-matched ids in playlist order, then reviewer selections by index."""
        ids = [r.match.id for r in self.auto_matched if r.match is not None]
        ids.extend(self.selected[i].id for i in sorted(self.selected))
        return ids

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "status": self.status.value,
            "source_service": self.source_service,
            "destination_service": self.destination_service,
            "playlist_name": self.playlist_name,
            "progress": dict(self.progress),
            "auto_matched": [r.to_dict() for r in self.auto_matched],
            "needs_review": [
                dict(r.to_dict(), track_index=i, candidates=[c.to_dict() for c in r.review_candidates])
                for i, r in enumerate(self.needs_review)
            ],
            "unavailable": [r.to_dict() for r in self.unavailable],
            "decisions": [d.to_dict() for d in self.decisions],
            "stats": dict(self.stats),
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class SessionStore(Protocol):
    def put(self, session: ReviewSession) -> None:
        ...

    def get(self, session_id: str) -> Optional[ReviewSession]:
        ...

    def delete(self, session_id: str) -> None:
        ...


class InMemorySessionStore:
    """Process-local store; sessions idle longer than ``ttl`` seconds are evicted
    on the next access unless they are processing or executing."""

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = config["SESSION_TTL_S"] if ttl is None else ttl
        self._clock = clock
        self._sessions: Dict[str, ReviewSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def put(self, session: ReviewSession) -> None:
        self.evict_expired()
        self._sessions[session.id] = session
        self._last_seen[session.id] = self._clock()

    def get(self, session_id: str) -> Optional[ReviewSession]:
        self.evict_expired()
        session = self._sessions.get(session_id)
        if session is not None:
            self._last_seen[session_id] = self._clock()
        return session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def evict_expired(self) -> int:
        now = self._clock()
        stale = [
            sid
            for sid, seen in self._last_seen.items()
            if now - seen > self.ttl and self._sessions[sid].status not in IN_FLIGHT
        ]
        for sid in stale:
            logger.debug("Evicting idle session %s", sid)
            self.delete(sid)
        return len(stale)


class TrackSource(Protocol):
    async def fetch_tracks(self, service: str, playlist_id: str) -> List[TrackDescriptor]:
        ...


class PlaylistCommitter(Protocol):
    async def commit(self, service: str, playlist_name: str, track_ids: List[str]) -> Dict[str, Any]:
        ...


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class SessionService:
    """The control surface a UI drives: prepare, status, submit_review, execute."""

    def __init__(
        self,
        engine_factory: Callable[[str, str], ResolutionEngine],
        committer: PlaylistCommitter,
        store: Optional[SessionStore] = None,
        track_source: Optional[TrackSource] = None,
        max_concurrent: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.engine_factory = engine_factory
        self.committer = committer
        self.store = store if store is not None else InMemorySessionStore()
        self.track_source = track_source
        self.max_concurrent = max_concurrent
        self.batch_size = batch_size
        self._tasks: Dict[str, asyncio.Task] = {}

    def _lookup(self, session_id: str) -> Union[ReviewSession, Failure]:
        session = self.store.get(session_id) if session_id else None
        if session is None:
            return Failure(SESSION_NOT_FOUND, f"No session {session_id!r}")
        return session

    async def prepare(self, payload: Dict[str, Any]) -> Union[Dict[str, str], Failure]:
        source = payload.get("source_service")
        destination = payload.get("destination_service")
        tracks = payload.get("tracks")
        playlist_id = payload.get("playlist_id")
        missing = [k for k, v in (("source_service", source), ("destination_service", destination)) if not v]
        if tracks is None and not playlist_id:
            missing.append("tracks or playlist_id")
        if missing:
            return Failure(MISSING_FIELDS, f"Missing required fields: {', '.join(missing)}")
        if tracks is None and self.track_source is None:
            return Failure(INVALID_PAYLOAD, "No track source configured; pass tracks inline")

        descriptors: Optional[List[TrackDescriptor]] = None
        if tracks is not None:
            try:
                descriptors = [self._to_descriptor(source, t) for t in tracks]
            except (TypeError, ValueError, AttributeError) as e:
                return Failure(INVALID_PAYLOAD, f"Unreadable tracks: {e}")

        session = ReviewSession(
            id=new_session_id(),
            source_service=source,
            destination_service=destination,
            playlist_name=payload.get("playlist_name") or "",
        )
        self.store.put(session)
        task = asyncio.create_task(self._process(session, descriptors, playlist_id))
        self._tasks[session.id] = task
        task.add_done_callback(lambda _t, sid=session.id: self._tasks.pop(sid, None))
        logger.info("Prepared session %s (%s -> %s)", session.id, source, destination)
        return {"session_id": session.id}

    @staticmethod
    def _to_descriptor(source: str, raw: Any) -> TrackDescriptor:
        if isinstance(raw, TrackDescriptor):
            return raw
        # Native payloads carry catalog-specific keys; anything else is a plain entry
        native = "attributes" in raw or "external_ids" in raw
        if source == "spotify" and isinstance(raw.get("album"), dict):
            native = True
        if source in ADAPTERS and native:
            return adapt(source, raw)
        return adapt("simple", raw)

    async def _process(
        self,
        session: ReviewSession,
        tracks: Optional[List[TrackDescriptor]],
        playlist_id: Optional[str],
    ) -> None:
        def on_progress(event: ItemProgress) -> None:
            session.progress["current"] = event.current
            session.events.publish(event)

        def on_batch(event: BatchProgress) -> None:
            session.progress["current"] = event.processed_items
            session.events.publish(event)

        try:
            if tracks is None:
                tracks = await self.track_source.fetch_tracks(session.source_service, playlist_id)
            session.progress["total"] = len(tracks)
            engine = self.engine_factory(session.source_service, session.destination_service)
            results = await engine.resolve_all(
                tracks,
                max_concurrent=self.max_concurrent,
                on_progress=on_progress,
                cancel=session.cancel_token,
                batch_size=self.batch_size,
                on_batch=on_batch,
            )
            session.cancel_token.raise_if_cancelled()
            session.apply_results(results)
        except TransferCancelled as e:
            logger.info("Session %s cancelled", session.id)
            session.fail(f"cancelled: {e}")
        except Exception as e:
            logger.exception("Session %s failed while resolving", session.id)
            session.fail(str(e) or type(e).__name__)
        finally:
            session.events.close()

    async def wait(self, session_id: str) -> None:
        task = self._tasks.get(session_id)
        if task is not None:
            await task

    def status(self, session_id: str) -> Union[Dict[str, Any], Failure]:
        session = self._lookup(session_id)
        if isinstance(session, Failure):
            return session
        return session.snapshot()

    def submit_review(self, session_id: str, payload: Dict[str, Any]) -> Union[Dict[str, Any], Failure]:
        session = self._lookup(session_id)
        if isinstance(session, Failure):
            return session
        raw = payload.get("decisions") if isinstance(payload, dict) else None
        if raw is None:
            return Failure(MISSING_FIELDS, "Missing required field: decisions")
        if not isinstance(raw, list):
            return Failure(INVALID_PAYLOAD, "decisions must be a list")
        try:
            decisions = [Decision.from_dict(d) for d in raw]
        except (TypeError, ValueError, AttributeError) as e:
            return Failure(INVALID_PAYLOAD, str(e))
        applied = session.submit_decisions(decisions)
        if isinstance(applied, Failure):
            return applied
        return {"status": session.status.value, "applied": len(applied), "dropped": len(decisions) - len(applied)}

    async def execute(self, session_id: str) -> Union[Dict[str, Any], Failure]:
        session = self._lookup(session_id)
        if isinstance(session, Failure):
            return session
        if session.status not in (SessionStatus.READY, SessionStatus.REVIEWED):
            return Failure(WRONG_STATE, f"Session is {session.status.value}; nothing to execute yet")
        session.transition(SessionStatus.EXECUTING)
        ids = session.commit_ids()
        try:
            outcome = await self.committer.commit(session.destination_service, session.playlist_name, ids)
        except Exception as e:
            logger.exception("Commit failed for session %s", session.id)
            session.fail(str(e) or type(e).__name__)
            return Failure(COMMIT_FAILED, session.error)
        total = len(session.auto_matched) + len(session.needs_review) + len(session.unavailable)
        session.stats = {
            "total": total,
            "auto_matched": len(session.auto_matched),
            "selected": len(session.selected),
            "ignored": len(session.ignored),
            "unresolved": len(session.needs_review) - len(session.selected) - len(session.ignored),
            "unavailable": len(session.unavailable),
            "committed": len(ids),
            "commit": outcome or {},
        }
        session.transition(SessionStatus.COMPLETED)
        logger.info("Session %s committed %d tracks", session.id, len(ids))
        return {"status": session.status.value, "stats": session.stats}

    def cancel(self, session_id: str) -> Union[Dict[str, Any], Failure]:
        session = self._lookup(session_id)
        if isinstance(session, Failure):
            return session
        session.cancel_token.cancel("cancelled by user")
        return {"status": session.status.value}
