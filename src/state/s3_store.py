from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError
from cryptography.fernet import Fernet, InvalidToken

from common.errors import OptimisticLockError, StoreReadError, StoreWriteError

from .codec import dump_value, load_value
from .models import CasPolicy, Entry


logger = logging.getLogger(__name__)


# Environment variable names for convenience configuration
ENV_BUCKET = "STATE_SYNC_BUCKET"
ENV_ROOT = "STATE_SYNC_ROOT"
ENV_FERNET_KEY = "STATE_SYNC_FERNET_KEY"

DEFAULT_ROOT = "state-sync"
SEQ_METADATA = "seq"


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


def _error_code(e: ClientError) -> Optional[str]:
    return e.response.get("Error", {}).get("Code")


@dataclass
class S3Root:
    bucket: str
    root: str

    def object_key(self, key: str) -> str:
        # Hex of the UTF-8 bytes keeps S3's listing order equal to key order
        return f"{self.root}/{key.encode('utf-8').hex()}"

    def entry_key(self, object_key: str) -> str:
        return bytes.fromhex(object_key[len(self.root) + 1:]).decode("utf-8")


class S3EntryStore:
    """
    S3-backed durable store, one encrypted object per entry.

    Layout
    - Entry `key` lives at `s3://<bucket>/<root>/<hex(utf-8 key)>`.
    - The body is the deterministic JSON of the value, encrypted with Fernet.
    - The entry's `seq` is kept in the object's user metadata and advances by
      one on every accepted write of that key.

    Writes are conditional on the object not having changed since it was
    read for the CAS check (`IfNoneMatch="*"` for new keys, `IfMatch=<etag>`
    otherwise). Losing that race raises `OptimisticLockError`; it is reported,
    never resolved here.

    boto3 is blocking, so every S3 call runs in a worker thread via
    `asyncio.to_thread`.

    Environment variables (optional)
    - `STATE_SYNC_BUCKET`:     S3 bucket holding the entries
    - `STATE_SYNC_ROOT`:       object key root (default "state-sync")
    - `STATE_SYNC_FERNET_KEY`: urlsafe base64-encoded key for Fernet
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        fernet_key: str | bytes,
        root: str = DEFAULT_ROOT,
        region_name: Optional[str] = None,
        page_size: int = 1000,
    ) -> None:
        if not root or root.endswith("/"):
            raise ValueError("root must be non-empty and must not end with '/'")
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._loc = S3Root(bucket=bucket, root=root)
        self._fernet = _to_fernet(fernet_key)
        self._page_size = page_size

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls, **kwargs: Any) -> "S3EntryStore":
        bucket = os.environ.get(ENV_BUCKET)
        fkey = os.environ.get(ENV_FERNET_KEY)
        root = os.environ.get(ENV_ROOT) or DEFAULT_ROOT
        if not bucket or not fkey:
            missing = [name for name, val in [(ENV_BUCKET, bucket), (ENV_FERNET_KEY, fkey)] if not val]
            raise RuntimeError(
                f"Missing required environment variables for S3 entry store: {', '.join(missing)}"
            )
        return cls(bucket=bucket, fernet_key=fkey, root=root, **kwargs)

    # -------- Blocking primitives (run in a worker thread) --------
    def _read(self, key: str) -> Tuple[Optional[Entry], Optional[str]]:
        """Return (entry, etag); (None, None) when the object does not exist."""
        try:
            resp = self._s3.get_object(Bucket=self._loc.bucket, Key=self._loc.object_key(key))
        except ClientError as e:
            if _error_code(e) in ("NoSuchKey", "404"):
                return (None, None)
            raise StoreReadError(f"Failed to read {key!r} from s3://{self._loc.bucket}/{self._loc.root}") from e

        body = resp["Body"].read()
        try:
            plaintext = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise StoreReadError(f"Failed to decrypt entry {key!r}: invalid Fernet token") from ex
        try:
            value = load_value(plaintext)
        except ValueError as ex:
            raise StoreReadError(f"Failed to parse decrypted entry {key!r}") from ex

        metadata: Dict[str, str] = resp.get("Metadata") or {}
        try:
            seq = int(metadata.get(SEQ_METADATA, "0"))
        except ValueError as ex:
            raise StoreReadError(f"Entry {key!r} carries a malformed seq") from ex
        return (Entry(key=key, value=value, seq=seq), resp.get("ETag"))

    def _list_page(self, prefix: str, token: Optional[str]) -> Tuple[List[str], Optional[str]]:
        params: Dict[str, Any] = {
            "Bucket": self._loc.bucket,
            "Prefix": prefix,
            "MaxKeys": self._page_size,
        }
        if token:
            params["ContinuationToken"] = token
        try:
            resp = self._s3.list_objects_v2(**params)
        except ClientError as e:
            raise StoreReadError(f"Failed to list s3://{self._loc.bucket}/{prefix}") from e
        keys = [item["Key"] for item in resp.get("Contents", [])]
        nxt = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        return (keys, nxt)

    def _write(self, key: str, value: Any, seq: int, *, if_match: Optional[str]) -> None:
        try:
            plaintext = dump_value(value)
        except (TypeError, ValueError) as ex:
            raise StoreWriteError(f"value for {key!r} is not JSON-serialisable") from ex
        ciphertext = self._fernet.encrypt(plaintext)

        params: Dict[str, Any] = {
            "Bucket": self._loc.bucket,
            "Key": self._loc.object_key(key),
            "Body": ciphertext,
            "ContentType": "application/octet-stream",
            "Metadata": {SEQ_METADATA: str(seq)},
        }
        # New keys must not exist yet; existing keys must not have changed since the CAS read
        if if_match is None:
            params["IfNoneMatch"] = "*"
        else:
            params["IfMatch"] = if_match

        try:
            self._s3.put_object(**params)
        except ClientError as e:
            if _error_code(e) in ("PreconditionFailed", "412", "ConditionalRequestConflict", "409"):
                raise OptimisticLockError(
                    f"Concurrent write to {key!r} at s3://{self._loc.bucket}/{self._loc.root}"
                ) from e
            raise StoreWriteError(f"Failed to write {key!r}") from e

    # -------- Store protocol --------
    async def get(self, key: str) -> Optional[Entry]:
        entry, _ = await asyncio.to_thread(self._read, key)
        return entry

    async def range_scan(self, gte: Optional[str] = None, lt: Optional[str] = None) -> AsyncIterator[Entry]:
        bounds = [b for b in (gte, lt) if b is not None]
        common = os.path.commonprefix(bounds) if len(bounds) == 2 else ""
        list_prefix = self._loc.object_key(common)
        token: Optional[str] = None
        while True:
            object_keys, token = await asyncio.to_thread(self._list_page, list_prefix, token)
            for object_key in object_keys:
                key = self._loc.entry_key(object_key)
                if gte is not None and key < gte:
                    continue
                if lt is not None and key >= lt:
                    return
                entry, _ = await asyncio.to_thread(self._read, key)
                # Deleted between listing and read
                if entry is None:
                    continue
                yield entry
            if token is None:
                return

    async def put(self, key: str, value: Any, *, cas: Optional[CasPolicy] = None) -> int:
        previous, etag = await asyncio.to_thread(self._read, key)
        if previous is not None and cas is not None:
            candidate = Entry(key=key, value=value)
            if not cas(previous, candidate):
                logger.debug("cas rejected write to %r (seq stays %s)", key, previous.seq)
                return previous.seq

        seq = (previous.seq or 0) + 1 if previous is not None else 1
        await asyncio.to_thread(self._write, key, value, seq, if_match=etag)
        return seq

