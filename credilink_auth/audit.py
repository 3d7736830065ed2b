"""
credilink_auth/audit.py

Tamper-evident security audit log for wallet logins.

We append one JSON object per line (JSONL). Each event is hash-chained:

  H_0 = "0"*64
  H_n = SHA3-256( bytes.fromhex(H_{n-1}) || canonical_json(event_without_hash_fields) )

Each line stores:
  - prev_hash: hex string (64 chars)
  - hash:      hex string (64 chars)

Properties:
- Any modification, deletion, or reordering of log lines breaks the chain.
- Chain state is persisted in <dir>/auth_audit.state
- A thread lock plus a file lock (flock) keep the chain consistent when
  several workers write at once.

Only hashes and lengths of signatures are recorded, never nonce values or
session tokens.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union


GENESIS_HASH = "0" * 64  # 32 bytes hex

LOG_NAME = "auth_audit.jsonl"
STATE_NAME = "auth_audit.state"
LOCK_NAME = "auth_audit.lock"


# -----------------------------------------------------------------------------
# Canonical JSON
# -----------------------------------------------------------------------------
def canonical_json_bytes(obj: Dict[str, Any]) -> bytes:
    """
    Deterministic JSON bytes for hashing and logging:
    - sorted keys
    - no whitespace
    - UTF-8
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sha3_256_hex(data: bytes) -> str:
    return hashlib.sha3_256(data).hexdigest()


def chain_hash(prev_hash: str, event: Dict[str, Any]) -> str:
    e = dict(event)
    e.pop("prev_hash", None)
    e.pop("hash", None)
    return sha3_256_hex(bytes.fromhex(prev_hash) + canonical_json_bytes(e))


# -----------------------------------------------------------------------------
# Event helpers
# -----------------------------------------------------------------------------
def build_common(
    *,
    event: str,
    address: Optional[str] = None,
    role: Optional[str] = None,
    record_id: Optional[str] = None,
    signature: Optional[str] = None,
    request_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """Common audit fields. Keep this "boring" and stable."""
    out: Dict[str, Any] = {
        "ts": int(time.time()),
        "event": event,
    }

    if address:
        out["address"] = address.lower()
    if role:
        out["role"] = role
    if record_id:
        out["record_id"] = record_id
    if request_ip:
        out["request_ip"] = request_ip
    if user_agent:
        out["user_agent"] = user_agent[:200]

    if signature is not None:
        sig_bytes = str(signature).encode("utf-8")
        out["signature_len"] = len(sig_bytes)
        out["signature_sha3_256"] = sha3_256_hex(sig_bytes)

    return out


class AuditLog:
    def __init__(self, directory: Union[str, Path], enabled: bool = True):
        self.directory = Path(directory)
        self.enabled = enabled
        self.log_path = self.directory / LOG_NAME
        self.state_path = self.directory / STATE_NAME
        self.lock_path = self.directory / LOCK_NAME
        self._lock = threading.Lock()

    def _read_last_hash_unlocked(self) -> str:
        """Last hash from the state file; GENESIS_HASH if missing or garbled."""
        if not self.state_path.exists():
            return GENESIS_HASH
        s = self.state_path.read_text(encoding="utf-8").strip().lower()
        if len(s) != 64:
            return GENESIS_HASH
        try:
            bytes.fromhex(s)
        except ValueError:
            return GENESIS_HASH
        return s

    def append(self, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Append one event with hash chaining and return the stored line.

        Callers cannot inject their own chain fields.
        """
        if not self.enabled:
            return None

        self.directory.mkdir(parents=True, exist_ok=True)

        with self._lock, open(self.lock_path, "a+", encoding="utf-8") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                prev_hash = self._read_last_hash_unlocked()

                stored = dict(event)
                stored.pop("prev_hash", None)
                stored.pop("hash", None)
                next_hash = chain_hash(prev_hash, stored)
                stored["prev_hash"] = prev_hash
                stored["hash"] = next_hash

                with open(self.log_path, "ab") as f:
                    f.write(canonical_json_bytes(stored) + b"\n")
                    f.flush()
                    os.fsync(f.fileno())

                self.state_path.write_text(next_hash + "\n", encoding="utf-8")
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

        return stored

    def events(self) -> Iterable[Dict[str, Any]]:
        if not self.log_path.exists():
            return
        with open(self.log_path, "rb") as f:
            for raw in f:
                raw = raw.strip()
                if raw:
                    yield json.loads(raw.decode("utf-8"))

    def verify(self) -> bool:
        return verify_log_chain(self.log_path)


def verify_log_chain(path: Path) -> bool:
    """
    Verify the hash chain of an audit log file.
    Returns True if valid (or absent), False otherwise.
    """
    if not path.exists():
        return True

    prev = GENESIS_HASH
    with open(path, "rb") as f:
        for raw_line in f:
            raw_line = raw_line.strip()
            if not raw_line:
                continue
            try:
                obj = json.loads(raw_line.decode("utf-8"))
            except ValueError:
                return False

            if obj.get("prev_hash") != prev:
                return False
            if chain_hash(prev, obj) != obj.get("hash"):
                return False
            prev = obj["hash"]

    return True
