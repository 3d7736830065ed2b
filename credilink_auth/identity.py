"""
credilink_auth/identity.py

Identity registry: one record per (role, address) claim.

Key points:
- The unit of uniqueness is the IdentityClaim (address, role).
- A wallet registered as a student cannot silently sign up as a recruiter
  (and vice versa): find_or_create() raises RoleConflict instead.
- Records are created verified (the caller has just proven key ownership)
  and are never deleted here. Logout only drops the session.

Persistence is OPTIONAL:
- path=None        -> in-memory registry (tests, single-process dev)
- path=<file.json> -> records are loaded at startup and the whole file is
                      rewritten atomically after every mutation

File format:

   {
     "records": [
       { "id": "...", "address": "0x...", "role": "student", ... },
       ...
     ]
   }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .errors import ImmutableField, RecordNotFound, RoleConflict
from .signatures import normalize_address, short_address


logger = logging.getLogger("credilink.identity")


class Role(str, Enum):
    STUDENT = "student"
    RECRUITER = "recruiter"

    @property
    def other(self) -> "Role":
        return Role.RECRUITER if self is Role.STUDENT else Role.STUDENT

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class IdentityClaim:
    address: str
    role: Role

    @classmethod
    def of(cls, address: str, role: Union[Role, str]) -> "IdentityClaim":
        return cls(address=normalize_address(address), role=Role(role))

    @property
    def key(self) -> str:
        return f"{self.role.value}:{self.address.lower()}"


@dataclass
class IdentityRecord:
    id: str
    address: str
    role: Role
    display_name: str
    verified: bool
    created_at: int

    # wallet context
    wallet_type: str = "metamask"
    chain_id: Optional[int] = None

    # profile fields (free text, accepted as-is)
    email: str = ""
    ens_name: str = ""
    avatar: str = ""
    bio: str = ""
    skills: List[str] = field(default_factory=list)
    company: str = ""
    experience: str = ""

    @property
    def claim(self) -> IdentityClaim:
        return IdentityClaim(address=self.address.lower(), role=self.role)

    def public_view(self) -> Dict[str, Any]:
        out = asdict(self)
        out["role"] = self.role.value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IdentityRecord":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["role"] = Role(kwargs["role"])
        kwargs["skills"] = list(kwargs.get("skills") or [])
        return cls(**kwargs)


# Fields a profile update may touch; id, address, role, verified, created_at
# and the wallet context are not among them.
PROFILE_FIELDS = frozenset(
    {"display_name", "email", "ens_name", "avatar", "bio", "skills", "company", "experience"}
)


def default_display_name(address: str, role: Role) -> str:
    return f"{role.label} {short_address(address)}"


class IdentityRegistry:
    """
    Thread-safe registry of identity records.

    find_or_create() runs as one critical section, so N callers registering
    the same claim concurrently observe exactly one creation.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path) if path else None
        self._clock = clock
        self._lock = threading.RLock()
        self._by_id: Dict[str, IdentityRecord] = {}
        self._by_claim: Dict[str, str] = {}

        if self.path is not None:
            self._load()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------
    def _load(self) -> None:
        assert self.path is not None
        if not self.path.exists():
            return

        raw = json.loads(self.path.read_text(encoding="utf-8"))
        for item in raw.get("records", []):
            rec = IdentityRecord.from_dict(item)
            self._index(rec)

        logger.info("loaded %d identity records from %s", len(self._by_id), self.path)

    def _flush_unlocked(self, changed: Optional[IdentityRecord] = None) -> None:
        """
        Write the registry, with `changed` in place of its stored version.

        Callers index `changed` only after this returns, so a failed write
        leaves memory and file in agreement.
        """
        if self.path is None:
            return

        records = dict(self._by_id)
        if changed is not None:
            records[changed.id] = changed

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"records": [r.public_view() for r in records.values()]}

        # write-then-rename so a crash never leaves a half-written file
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, sort_keys=True, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _index(self, rec: IdentityRecord) -> None:
        self._by_id[rec.id] = rec
        self._by_claim[rec.claim.key] = rec.id

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------
    def get(self, record_id: str) -> IdentityRecord:
        with self._lock:
            rec = self._by_id.get(record_id)
        if rec is None:
            raise RecordNotFound(f"identity record not found: {record_id}")
        return rec

    def find(self, claim: IdentityClaim) -> Optional[IdentityRecord]:
        with self._lock:
            rid = self._by_claim.get(claim.key)
            return self._by_id.get(rid) if rid else None

    def find_by_address(self, address: str) -> Optional[IdentityRecord]:
        """Return the record registered for this wallet under any role."""
        addr = normalize_address(address)
        with self._lock:
            for role in Role:
                rid = self._by_claim.get(IdentityClaim(addr, role).key)
                if rid:
                    return self._by_id[rid]
        return None

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------
    def find_or_create(
        self,
        claim: IdentityClaim,
        chain_id: Optional[int] = None,
    ) -> Tuple[IdentityRecord, bool]:
        with self._lock:
            existing = self.find(claim)
            if existing is not None:
                return existing, False

            other = self.find(IdentityClaim(claim.address, claim.role.other))
            if other is not None:
                raise RoleConflict(claim.address, other.role.value, claim.role.value)

            rec = IdentityRecord(
                id=uuid.uuid4().hex,
                address=claim.address,
                role=claim.role,
                display_name=default_display_name(claim.address, claim.role),
                verified=True,
                created_at=int(self._clock()),
                chain_id=chain_id,
            )
            self._flush_unlocked(rec)
            self._index(rec)

        logger.info(
            "created %s identity %s for %s",
            rec.role.value,
            rec.id,
            short_address(rec.address),
        )
        return rec, True

    def update(self, record_id: str, partial: Mapping[str, Any]) -> IdentityRecord:
        """
        Merge profile fields into an existing record.

        Values are taken as-is (no content validation); only the field names
        are checked so identity fields cannot be rewritten through a profile
        edit. None means "not provided" and leaves the field alone.
        """
        blocked = sorted(set(partial) - PROFILE_FIELDS)
        if blocked:
            raise ImmutableField(f"fields cannot be updated: {', '.join(blocked)}")

        with self._lock:
            changes = {k: v for k, v in partial.items() if v is not None}
            if "skills" in changes:
                changes["skills"] = list(changes["skills"])
            rec = replace(self.get(record_id), **changes)
            self._flush_unlocked(rec)
            self._index(rec)
        return rec

    def switch_chain(self, record_id: str, chain_id: int) -> IdentityRecord:
        with self._lock:
            rec = replace(self.get(record_id), chain_id=int(chain_id))
            self._flush_unlocked(rec)
            self._index(rec)
        return rec

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)
