"""Draft state store - expiring per-room draft records with validated decoding."""

import dataclasses
import json
import logging
import time
from typing import Callable, List, Optional, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError
from sqlalchemy import delete, select

from src.contest_draft.config import (
    BONUS_CONTEST_TYPES,
    DRAFT_STATE_TTL_SECONDS,
    TURN_META_TTL_SECONDS,
)
from src.contest_draft.db import Database, DraftStateRecord, TurnRecord
from src.contest_draft.errors import CorruptedStateError
from src.contest_draft.models import DraftInstance, RoomEntry, Team, TurnMetadata
from src.contest_draft.roster_rules import stack_bonus

logger = logging.getLogger(__name__)

T = TypeVar("T")

EntrySource = Callable[[str], List[RoomEntry]]


class DraftStateStore:
    """Saves and loads DraftInstance records keyed by room id.

    Every decode goes through a pydantic schema. A record whose only defect
    is a malformed ``teams`` field is repaired from its seat list (or, when
    that is unusable too, from ``entry_source``), its recorded picks are
    replayed onto the rebuilt rosters, and the repaired record is written
    back before being returned.
    """

    def __init__(
        self,
        database: Database,
        ttl_seconds: float = DRAFT_STATE_TTL_SECONDS,
        entry_source: Optional[EntrySource] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.ttl_seconds = ttl_seconds
        self.entry_source = entry_source
        self.clock = clock
        self._draft_schema = TypeAdapter(DraftInstance)
        self._entries_schema = TypeAdapter(List[RoomEntry])

    # ------------------------------------------------------------------
    # Draft records
    # ------------------------------------------------------------------

    def save(self, draft: DraftInstance, ttl_seconds: Optional[float] = None):
        """Write the draft, resetting its expiry.

        Raises:
            CorruptedStateError: If ``teams`` is not a list.
        """
        if not isinstance(draft.teams, list):
            raise CorruptedStateError(
                f"Refusing to save draft {draft.room_id}: teams is "
                f"{type(draft.teams).__name__}, not a list"
            )
        payload = self._draft_schema.dump_json(draft).decode("utf-8")
        expires_at = self.clock() + (ttl_seconds if ttl_seconds is not None else self.ttl_seconds)

        with self.database.session() as session:
            record = session.get(DraftStateRecord, draft.room_id)
            if record is None:
                session.add(
                    DraftStateRecord(room_id=draft.room_id, payload=payload, expires_at=expires_at)
                )
            else:
                record.payload = payload
                record.expires_at = expires_at

        logger.debug(
            "Saved draft %s (turn %d/%d, status %s)",
            draft.room_id,
            draft.current_turn,
            draft.total_picks,
            draft.status,
        )

    def load(self, room_id: str) -> Optional[DraftInstance]:
        """Load a draft, repairing a malformed teams field.

        Returns:
            The DraftInstance, or None if there is no live record.

        Raises:
            CorruptedStateError: If the record cannot be decoded or repaired.
        """
        with self.database.session() as session:
            record = session.get(DraftStateRecord, room_id)
            if record is None:
                return None
            if record.expires_at <= self.clock():
                logger.info("Draft state for %s expired; discarding", room_id)
                session.delete(record)
                return None
            payload = record.payload

        try:
            raw = json.loads(payload)
        except json.JSONDecodeError as e:
            raise CorruptedStateError(f"Draft {room_id} is not valid JSON: {e}") from e
        return self._decode(room_id, raw)

    def update(self, room_id: str, mutate: Callable[[DraftInstance], T]) -> T:
        """Load, apply ``mutate``, save, and return what ``mutate`` returned.

        Callers must serialize writes for a room; this is a plain
        read-then-write.
        """
        draft = self.load(room_id)
        if draft is None:
            raise CorruptedStateError(f"No draft state for room {room_id}")
        result = mutate(draft)
        self.save(draft)
        return result

    def expire(self, room_id: str, seconds: float) -> bool:
        """Move a record's expiry to ``seconds`` from now."""
        with self.database.session() as session:
            record = session.get(DraftStateRecord, room_id)
            if record is None:
                return False
            record.expires_at = self.clock() + seconds
            return True

    def delete(self, room_id: str) -> bool:
        with self.database.session() as session:
            result = session.execute(
                delete(DraftStateRecord).where(DraftStateRecord.room_id == room_id)
            )
            deleted = result.rowcount > 0
        self.clear_turn(room_id)
        return deleted

    # ------------------------------------------------------------------
    # Turn metadata
    # ------------------------------------------------------------------

    def save_turn(self, meta: TurnMetadata, ttl_seconds: float = TURN_META_TTL_SECONDS):
        with self.database.session() as session:
            record = session.get(TurnRecord, meta.room_id)
            if record is None:
                record = TurnRecord(room_id=meta.room_id)
                session.add(record)
            record.turn = meta.turn
            record.user_id = meta.user_id
            record.time_limit = meta.time_limit
            record.started_at = meta.started_at
            record.expires_at = self.clock() + ttl_seconds

    def load_turn(self, room_id: str) -> Optional[TurnMetadata]:
        with self.database.session() as session:
            record = session.get(TurnRecord, room_id)
            if record is None or record.expires_at <= self.clock():
                return None
            return TurnMetadata(
                room_id=record.room_id,
                turn=record.turn,
                user_id=record.user_id,
                time_limit=record.time_limit,
                started_at=record.started_at,
            )

    def clear_turn(self, room_id: str):
        with self.database.session() as session:
            session.execute(delete(TurnRecord).where(TurnRecord.room_id == room_id))

    def purge_expired(self) -> int:
        """Delete expired draft and turn records. Returns rows removed."""
        now = self.clock()
        with self.database.session() as session:
            drafts = session.execute(
                delete(DraftStateRecord).where(DraftStateRecord.expires_at <= now)
            ).rowcount
            turns = session.execute(
                delete(TurnRecord).where(TurnRecord.expires_at <= now)
            ).rowcount
        if drafts or turns:
            logger.info("Purged %d expired drafts and %d turn records", drafts, turns)
        return drafts + turns

    # ------------------------------------------------------------------
    # Decoding and repair
    # ------------------------------------------------------------------

    def _decode(self, room_id: str, raw) -> DraftInstance:
        if not isinstance(raw, dict):
            raise CorruptedStateError(
                f"Draft {room_id} decoded to {type(raw).__name__}, expected an object"
            )
        try:
            return self._draft_schema.validate_python(raw)
        except SchemaError as e:
            if not all(err["loc"] and err["loc"][0] == "teams" for err in e.errors()):
                logger.error("Draft %s failed validation: %s", room_id, e)
                raise CorruptedStateError(f"Draft {room_id} failed validation") from e

        logger.warning(
            "Draft %s has malformed teams (%s); rebuilding from entries",
            room_id,
            type(raw.get("teams")).__name__,
        )
        repaired = dict(raw)
        repaired["teams"] = []
        repaired["entries"] = self._usable_entries(room_id, raw.get("entries"))
        try:
            draft = self._draft_schema.validate_python(repaired)
        except SchemaError as e:
            raise CorruptedStateError(f"Draft {room_id} could not be repaired") from e

        try:
            draft.teams = self._rebuild_teams(draft)
        except ValueError as e:
            logger.error("Draft %s picks cannot be replayed: %s", room_id, e)
            raise CorruptedStateError(f"Draft {room_id} picks cannot be replayed") from e
        self.save(draft)
        logger.info("Repaired teams for draft %s (%d teams)", room_id, len(draft.teams))
        return draft

    def _usable_entries(self, room_id: str, raw_entries) -> List[dict]:
        try:
            entries = self._entries_schema.validate_python(raw_entries)
        except SchemaError:
            entries = []
        if not entries and self.entry_source is not None:
            entries = self.entry_source(room_id)
        if not entries:
            raise CorruptedStateError(
                f"Draft {room_id} has malformed teams and no entries to rebuild from"
            )
        return [dataclasses.asdict(e) for e in entries]

    @staticmethod
    def _rebuild_teams(draft: DraftInstance) -> List[Team]:
        teams = [
            Team.from_entry(entry)
            for entry in sorted(draft.entries, key=lambda e: e.draft_position)
        ]
        for pick in draft.picks:
            if pick.skipped or pick.player is None or pick.roster_slot is None:
                continue
            if not 0 <= pick.team_index < len(teams):
                logger.warning(
                    "Pick %d in %s references missing team %d",
                    pick.pick_number,
                    draft.room_id,
                    pick.team_index,
                )
                continue
            team = teams[pick.team_index]
            if draft.contest_type in BONUS_CONTEST_TYPES:
                team.bonus += stack_bonus(team, pick.player)
            team.add_player(pick.player, pick.roster_slot)
        return teams
