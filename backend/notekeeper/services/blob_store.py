"""
NoteKeeper Backend — Object Store Adapter
===========================================

What:  Namespaced blob storage on the local file system: create/delete
       namespaces, upload/download/delete/list objects by key.
How:   Each namespace is a directory below the storage root. Object bytes live
       in `<ns>/<key>`; content type, metadata and timestamps in a JSON sidecar
       `<ns>/.meta/<key>.json`. Uploads go to `<ns>/.tmp/` first and are moved
       into place with an atomic replace, so readers never see half an object.
Who:   Attachment service (note namespace), archive builder and archive
       service (archive namespace), note deletion (both).

Naming rules:
    Namespace: 3-63 chars, lowercase letters, digits and hyphens, starting and
               ending with a letter or digit (same rules as a cloud container).
    Key:       one path segment; no separators, no leading dot, at most 255
               chars. Dot-prefixed names are reserved for the store itself.

Directory Structure:
    storage/
    ├── 6f1c...-9a/                 ← note namespace
    │   ├── .namespace.json         ← namespace properties (public access)
    │   ├── .meta/a.png.json
    │   └── a.png
    └── 6f1c...-9a-archive/         ← archive namespace
        └── 0b7e....zip
"""

import asyncio
import enum
import json
import logging
import os
import re
import shutil
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Dict, List, Optional, Union

import aiofiles
import aiofiles.os

from notekeeper.exceptions import BlobStorageError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

NAMESPACE_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")
MAX_KEY_LENGTH = 255
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_NAMESPACE_PROPERTIES = ".namespace.json"
_META_DIR = ".meta"
_TMP_DIR = ".tmp"


class PublicAccess(str, enum.Enum):
    """Anonymous read access level of a namespace."""

    NONE = "none"
    BLOB = "blob"  # objects are readable, listing is not


@dataclass(frozen=True)
class ObjectProperties:
    namespace: str
    key: str
    content_type: str
    length: int
    created: datetime
    last_modified: datetime
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ObjectPage:
    """One page of a namespace listing; `continuation_token` is None on the last page."""

    items: List[ObjectProperties]
    continuation_token: Optional[str] = None


class ObjectStore:
    """
    File-system object store.

    Every method is a suspension point. OS errors are translated to
    BlobStorageError; absent namespaces/objects to NotFoundError where the
    caller asked for something specific, or to False/None where the method is a
    probe (`exists`, `namespace_exists`, `delete`).
    """

    CHUNK_SIZE = 64 * 1024
    DEFAULT_PAGE_SIZE = 100

    def __init__(self, storage_root: str):
        self.storage_root = Path(storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("ObjectStore initialized with storage_root=%s", self.storage_root)

    # ── Name validation ───────────────────────────────────────────────────

    @staticmethod
    def validate_namespace(namespace: str) -> str:
        if not NAMESPACE_PATTERN.match(namespace or "") or "--" in namespace:
            raise ValidationError(
                message=f"'{namespace}' is not a valid namespace name.",
                field="namespace",
            )
        return namespace

    @staticmethod
    def validate_key(key: str) -> str:
        """
        Validate an object key.

        Returns: the key unchanged.
        Raises:  ValidationError if the key could escape its namespace directory
                 or collide with the store's own bookkeeping files.
        """
        if (
            not key
            or len(key) > MAX_KEY_LENGTH
            or key.startswith(".")
            or "/" in key
            or "\\" in key
            or "\x00" in key
        ):
            raise ValidationError(
                message=(
                    f"'{key}' is not a valid object name. Names must be a single path "
                    f"segment of at most {MAX_KEY_LENGTH} characters and must not start with '.'."
                ),
                field="key",
            )
        return key

    def _namespace_dir(self, namespace: str) -> Path:
        return self.storage_root / self.validate_namespace(namespace)

    def _object_path(self, namespace: str, key: str) -> Path:
        return self._namespace_dir(namespace) / self.validate_key(key)

    def _meta_path(self, namespace: str, key: str) -> Path:
        return self._namespace_dir(namespace) / _META_DIR / f"{self.validate_key(key)}.json"

    # ── Namespaces ────────────────────────────────────────────────────────

    async def namespace_exists(self, namespace: str) -> bool:
        return await aiofiles.os.path.isdir(self._namespace_dir(namespace))

    async def create_namespace(
        self,
        namespace: str,
        public_access: PublicAccess = PublicAccess.NONE,
    ) -> bool:
        """
        Create a namespace if it does not exist yet.

        Returns: True if this call created it, False if it already existed.
        The public access level is applied only on creation; use
        `set_public_access` to change an existing namespace.
        """
        ns_dir = self._namespace_dir(namespace)
        try:
            await aiofiles.os.makedirs(ns_dir / _META_DIR, exist_ok=True)
            await aiofiles.os.makedirs(ns_dir / _TMP_DIR, exist_ok=True)
            props_path = ns_dir / _NAMESPACE_PROPERTIES
            if await aiofiles.os.path.exists(props_path):
                return False
            await self._write_json(props_path, {
                "public_access": public_access.value,
                "created": datetime.now(timezone.utc).isoformat(),
            })
            logger.info("Namespace created: %s (public_access=%s)", namespace, public_access.value)
            return True
        except OSError as e:
            raise self._storage_error("create namespace", namespace, e)

    async def set_public_access(self, namespace: str, public_access: PublicAccess) -> None:
        props_path = self._namespace_dir(namespace) / _NAMESPACE_PROPERTIES
        props = await self._read_namespace_properties(namespace)
        props["public_access"] = public_access.value
        try:
            await self._write_json(props_path, props)
        except OSError as e:
            raise self._storage_error("set access policy on", namespace, e)

    async def get_public_access(self, namespace: str) -> PublicAccess:
        props = await self._read_namespace_properties(namespace)
        return PublicAccess(props.get("public_access", PublicAccess.NONE.value))

    async def delete_namespace(self, namespace: str) -> bool:
        """Delete a namespace and everything in it. Returns False if it did not exist."""
        ns_dir = self._namespace_dir(namespace)
        if not await aiofiles.os.path.isdir(ns_dir):
            return False
        try:
            await asyncio.to_thread(shutil.rmtree, ns_dir)
        except OSError as e:
            raise self._storage_error("delete namespace", namespace, e)
        logger.info("Namespace deleted: %s", namespace)
        return True

    async def _read_namespace_properties(self, namespace: str) -> Dict[str, str]:
        if not await self.namespace_exists(namespace):
            raise NotFoundError(resource="namespace", resource_id=namespace)
        props_path = self._namespace_dir(namespace) / _NAMESPACE_PROPERTIES
        try:
            return await self._read_json(props_path)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise self._storage_error("read properties of", namespace, e)

    # ── Listing ───────────────────────────────────────────────────────────

    async def list_page(
        self,
        namespace: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        continuation_token: Optional[str] = None,
    ) -> ObjectPage:
        """
        Return one page of objects, ordered by key.

        `continuation_token` is the last key of the previous page. Objects
        added or removed between pages may or may not show up.
        """
        ns_dir = self._namespace_dir(namespace)
        try:
            names = await aiofiles.os.listdir(ns_dir)
        except FileNotFoundError:
            raise NotFoundError(resource="namespace", resource_id=namespace)
        except OSError as e:
            raise self._storage_error("list", namespace, e)

        keys = sorted(
            name for name in names
            if not name.startswith(".")
            and (continuation_token is None or name > continuation_token)
        )
        page_keys = keys[:page_size]

        items = []
        for key in page_keys:
            props = await self._load_properties(namespace, key)
            if props is not None:  # deleted while listing
                items.append(props)

        next_token = page_keys[-1] if len(keys) > page_size else None
        return ObjectPage(items=items, continuation_token=next_token)

    async def iter_pages(
        self,
        namespace: str,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[ObjectPage]:
        """Walk every page of a namespace listing."""
        token: Optional[str] = None
        while True:
            page = await self.list_page(namespace, page_size=page_size, continuation_token=token)
            yield page
            if page.continuation_token is None:
                return
            token = page.continuation_token

    async def list_objects(self, namespace: str) -> List[ObjectProperties]:
        objects: List[ObjectProperties] = []
        async for page in self.iter_pages(namespace):
            objects.extend(page.items)
        return objects

    async def count_objects(self, namespace: str) -> int:
        count = 0
        async for page in self.iter_pages(namespace):
            count += len(page.items)
        return count

    # ── Objects ───────────────────────────────────────────────────────────

    async def exists(self, namespace: str, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._object_path(namespace, key))

    async def get_properties(self, namespace: str, key: str) -> ObjectProperties:
        props = await self._load_properties(namespace, key)
        if props is None:
            raise NotFoundError(resource="object", resource_id=key,
                                context={"namespace": namespace})
        return props

    async def download(self, namespace: str, key: str) -> bytes:
        """Read an entire object into memory."""
        chunks = [chunk async for chunk in self.open_read(namespace, key)]
        return b"".join(chunks)

    async def open_read(self, namespace: str, key: str) -> AsyncIterator[bytes]:
        """Stream an object's content in CHUNK_SIZE pieces."""
        path = self._object_path(namespace, key)
        try:
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(self.CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
        except FileNotFoundError:
            raise NotFoundError(resource="object", resource_id=key,
                                context={"namespace": namespace})
        except OSError as e:
            raise self._storage_error("read", f"{namespace}/{key}", e)

    async def upload(
        self,
        namespace: str,
        key: str,
        data: Union[bytes, AsyncIterable[bytes]],
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ObjectProperties:
        """
        Create or overwrite an object.

        `data` is either the full content or an async iterable of chunks.
        The namespace must exist (NotFoundError otherwise). An overwrite keeps
        the original `created` timestamp.
        """
        ns_dir = self._namespace_dir(namespace)
        target = self._object_path(namespace, key)
        if not await aiofiles.os.path.isdir(ns_dir):
            raise NotFoundError(resource="namespace", resource_id=namespace)

        previous = await self._load_properties(namespace, key)
        tmp_path = ns_dir / _TMP_DIR / uuid.uuid4().hex
        length = 0
        try:
            await aiofiles.os.makedirs(tmp_path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    await f.write(data)
                    length = len(data)
                else:
                    async for chunk in data:
                        await f.write(chunk)
                        length += len(chunk)
            await aiofiles.os.replace(tmp_path, target)

            now = datetime.now(timezone.utc)
            props = ObjectProperties(
                namespace=namespace,
                key=key,
                content_type=content_type or DEFAULT_CONTENT_TYPE,
                length=length,
                created=previous.created if previous else now,
                last_modified=now,
                metadata=dict(metadata or {}),
            )
            await self._save_properties(props)
        except OSError as e:
            raise self._storage_error("write", f"{namespace}/{key}", e)
        finally:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)

        logger.info("Object stored: %s/%s (%d bytes, %s)", namespace, key, length, props.content_type)
        return props

    async def delete(self, namespace: str, key: str) -> bool:
        """Delete an object. Returns False if it did not exist."""
        path = self._object_path(namespace, key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise self._storage_error("delete", f"{namespace}/{key}", e)
        try:
            await aiofiles.os.remove(self._meta_path(namespace, key))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise self._storage_error("delete metadata of", f"{namespace}/{key}", e)
        logger.info("Object deleted: %s/%s", namespace, key)
        return True

    # ── Sidecar metadata ──────────────────────────────────────────────────

    async def _load_properties(self, namespace: str, key: str) -> Optional[ObjectProperties]:
        path = self._object_path(namespace, key)
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise self._storage_error("stat", f"{namespace}/{key}", e)

        try:
            meta = await self._read_json(self._meta_path(namespace, key))
        except FileNotFoundError:
            meta = {}
        except (OSError, ValueError) as e:
            raise self._storage_error("read metadata of", f"{namespace}/{key}", e)

        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return ObjectProperties(
            namespace=namespace,
            key=key,
            content_type=meta.get("content_type", DEFAULT_CONTENT_TYPE),
            length=stat.st_size,
            created=_parse_time(meta.get("created")) or modified,
            last_modified=_parse_time(meta.get("last_modified")) or modified,
            metadata=meta.get("metadata", {}),
        )

    async def _save_properties(self, props: ObjectProperties) -> None:
        meta_path = self._meta_path(props.namespace, props.key)
        await aiofiles.os.makedirs(meta_path.parent, exist_ok=True)
        await self._write_json(meta_path, {
            "content_type": props.content_type,
            "created": props.created.isoformat(),
            "last_modified": props.last_modified.isoformat(),
            "metadata": props.metadata,
        })

    @staticmethod
    async def _read_json(path: Path) -> dict:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    @staticmethod
    async def _write_json(path: Path, payload: dict) -> None:
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex}.part")
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(json.dumps(payload))
        await aiofiles.os.replace(tmp, path)

    @staticmethod
    def _storage_error(action: str, target: str, error: Exception) -> BlobStorageError:
        logger.error("Failed to %s %s: %s", action, target, error)
        return BlobStorageError(
            message=f"Failed to {action} {target}: {error.__class__.__name__}",
            context={"target": target, "os_error": str(error)},
        )


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
