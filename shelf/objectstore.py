"""Object storage for book covers.

Two backends share the ``ObjectStore`` protocol:

- ``LocalObjectStore`` keeps objects under a data directory and signs
  time-limited URLs with HMAC-SHA256.
- ``SupabaseObjectStore`` talks to the Supabase Storage REST API.

Object keys are built by ``generate_object_key`` so they stay ASCII-safe
and do not collide between uploads of the same file name.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import hmac
import json
import re
import time
import uuid
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import parse_qs, quote, unquote, urlsplit

import httpx

from .errors import NotFoundError, UpstreamError, ValidationError
from .logging_config import get_logger

logger = get_logger(__name__)

_TRANSLITERATION = str.maketrans({
    "ç": "c", "Ç": "C", "ğ": "g", "Ğ": "G", "ı": "i", "İ": "I",
    "ö": "o", "Ö": "O", "ş": "s", "Ş": "S", "ü": "u", "Ü": "U",
    "à": "a", "á": "a", "â": "a", "ã": "a", "ä": "a", "å": "a",
    "è": "e", "é": "e", "ê": "e", "ë": "e",
    "ì": "i", "í": "i", "î": "i", "ï": "i",
    "ò": "o", "ó": "o", "ô": "o", "õ": "o",
    "ù": "u", "ú": "u", "û": "u",
    "ñ": "n", "ý": "y", "ÿ": "y",
    " ": "_",
})
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "txt": "text/plain",
}

MAX_BASE_NAME = 50


@dataclasses.dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    etag: str
    size: int


class ObjectStore(Protocol):
    async def upload(
        self,
        data: bytes,
        original_name: str,
        *,
        target_key: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> StoredObject: ...

    async def download(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def presign(self, key: str, ttl_seconds: int = 3600) -> str: ...

    async def list(self, prefix: str = "") -> list[str]: ...

    def key_from_url(self, url: Optional[str]) -> Optional[str]: ...


def sanitize_filename(name: str) -> str:
    """Reduce a file name to ``[A-Za-z0-9._-]`` with single underscores."""
    cleaned = name.translate(_TRANSLITERATION)
    cleaned = _UNSAFE_CHARS.sub("_", cleaned)
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned)
    return cleaned.strip("_")


def split_extension(name: str) -> tuple[str, str]:
    """Return (base, lowercased extension); extension is '' when absent."""
    base, dot, extension = name.rpartition(".")
    if not dot or not base:
        return name, ""
    return base, extension.lower()


def generate_object_key(original_name: str, prefix: str = "") -> str:
    """``{prefix}/{ms timestamp}-{8 hex}-{clean base}.{ext}``"""
    base, extension = split_extension(original_name)
    clean_base = sanitize_filename(base)[:MAX_BASE_NAME] or "file"
    name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{clean_base}"
    if extension:
        name = f"{name}.{sanitize_filename(extension)}"
    prefix = prefix.strip("/")
    return f"{prefix}/{name}" if prefix else name


def guess_content_type(name: str) -> str:
    return _CONTENT_TYPES.get(split_extension(name)[1], "application/octet-stream")


def _check_key(key: str) -> str:
    key = key.strip()
    if not key or key.startswith("/") or ".." in key.split("/"):
        raise ValidationError(f"Invalid object key: {key!r}")
    return key


class LocalObjectStore:
    """Objects stored as plain files under ``root``; metadata in ``root/.meta``."""

    META_DIR = ".meta"

    def __init__(self, root: Path, public_base_url: str, signing_key: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.signing_key = signing_key.encode("utf-8")

    def _path(self, key: str) -> Path:
        return self.root / _check_key(key)

    def _meta_path(self, key: str) -> Path:
        return self.root / self.META_DIR / f"{_check_key(key)}.json"

    def _url(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    def _write(self, key: str, data: bytes, meta: dict) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        meta_path = self._meta_path(key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(json.dumps(meta), encoding="utf-8")

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)

    def _list(self, prefix: str) -> list[str]:
        if not self.root.exists():
            return []
        keys = []
        for path in self.root.rglob("*"):
            if not path.is_file():
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(f"{self.META_DIR}/"):
                continue
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def upload(
        self,
        data: bytes,
        original_name: str,
        *,
        target_key: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> StoredObject:
        key = _check_key(target_key or generate_object_key(original_name))
        etag = hashlib.md5(data).hexdigest()
        meta = {
            "original_name": sanitize_filename(original_name),
            "content_type": content_type or guess_content_type(original_name),
            "etag": etag,
            "metadata": dict(metadata or {}),
        }
        try:
            await asyncio.to_thread(self._write, key, data, meta)
        except OSError as exc:
            raise UpstreamError(f"Upload failed: {key}", detail=str(exc)) from exc
        logger.debug(f"Stored object {key} ({len(data)} bytes)")
        return StoredObject(key=key, url=self._url(key), etag=etag, size=len(data))

    async def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Object not found: {key}") from exc
        except OSError as exc:
            raise UpstreamError(f"Download failed: {key}", detail=str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove, key)
        except OSError as exc:
            raise UpstreamError(f"Delete failed: {key}", detail=str(exc)) from exc
        logger.debug(f"Deleted object {key}")

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)

    async def list(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list, prefix)

    def _signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode("utf-8")
        return hmac.new(self.signing_key, message, hashlib.sha256).hexdigest()

    async def presign(self, key: str, ttl_seconds: int = 3600) -> str:
        key = _check_key(key)
        expires = int(time.time()) + ttl_seconds
        return f"{self._url(key)}?expires={expires}&signature={self._signature(key, expires)}"

    def verify_presigned(self, url: str, now: Optional[float] = None) -> bool:
        """True when ``url`` was produced by ``presign`` and has not expired."""
        key = self.key_from_url(url)
        query = parse_qs(urlsplit(url).query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError):
            return False
        if key is None or expires < (now if now is not None else time.time()):
            return False
        return hmac.compare_digest(signature, self._signature(key, expires))

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        marker = f"{self.public_base_url}/"
        if not url.startswith(marker):
            return None
        key = unquote(urlsplit(url[len(marker):]).path)
        return key.strip() or None


class SupabaseObjectStore:
    """Supabase Storage REST client.

    A shared ``httpx.AsyncClient`` may be injected (tests pass one built on
    ``httpx.MockTransport``); otherwise a client is created per call.
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        bucket: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        if not (url and service_key and bucket):
            raise ValueError("Supabase storage needs url, service key and bucket")
        self.base_url = url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout
        self._client = client

    def _headers(self, content_type: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(key)}"

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(key)}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            if self._client is not None:
                return await self._client.request(method, url, timeout=self.timeout, **kwargs)
            async with httpx.AsyncClient() as client:
                return await client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.RequestError as exc:
            logger.error(f"Error communicating with Supabase: {exc}")
            raise UpstreamError("Object storage is unreachable", detail=str(exc)) from exc

    def _raise_for(self, response: httpx.Response, action: str, key: str) -> None:
        if response.status_code >= 400:
            logger.error(f"Supabase {action} failed for {key}: {response.status_code} {response.text}")
            raise UpstreamError(
                f"Failed to {action} object in storage",
                detail=f"{response.status_code}: {response.text}",
            )

    async def upload(
        self,
        data: bytes,
        original_name: str,
        *,
        target_key: Optional[str] = None,
        content_type: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> StoredObject:
        key = _check_key(target_key or generate_object_key(original_name))
        headers = self._headers(content_type or guess_content_type(original_name))
        headers["x-upsert"] = "true"
        if metadata:
            headers["x-metadata"] = json.dumps(metadata)
        response = await self._request("POST", self._object_url(key), content=data, headers=headers)
        self._raise_for(response, "upload", key)
        etag = response.headers.get("etag", "").strip('"') or hashlib.md5(data).hexdigest()
        logger.debug(f"Uploaded {key} to bucket {self.bucket}")
        return StoredObject(key=key, url=self.public_url(key), etag=etag, size=len(data))

    async def download(self, key: str) -> bytes:
        response = await self._request("GET", self._object_url(_check_key(key)), headers=self._headers())
        if response.status_code == 404:
            raise NotFoundError(f"Object not found: {key}")
        self._raise_for(response, "download", key)
        return response.content

    async def delete(self, key: str) -> None:
        response = await self._request("DELETE", self._object_url(_check_key(key)), headers=self._headers())
        # The object may already be gone
        if response.status_code == 404:
            return
        self._raise_for(response, "delete", key)

    async def exists(self, key: str) -> bool:
        response = await self._request("HEAD", self._object_url(_check_key(key)), headers=self._headers())
        if response.status_code in (400, 404):
            return False
        self._raise_for(response, "inspect", key)
        return True

    async def presign(self, key: str, ttl_seconds: int = 3600) -> str:
        key = _check_key(key)
        response = await self._request(
            "POST",
            f"{self.base_url}/storage/v1/object/sign/{self.bucket}/{quote(key)}",
            json={"expiresIn": ttl_seconds},
            headers=self._headers(),
        )
        self._raise_for(response, "sign", key)
        signed_path = response.json().get("signedURL")
        if not signed_path:
            raise UpstreamError("Object storage returned no signed URL")
        return f"{self.base_url}/storage/v1{signed_path}"

    async def list(self, prefix: str = "") -> list[str]:
        folder = prefix.strip("/")
        response = await self._request(
            "POST",
            f"{self.base_url}/storage/v1/object/list/{self.bucket}",
            json={"prefix": folder, "limit": 1000, "offset": 0},
            headers=self._headers(),
        )
        self._raise_for(response, "list", folder or "/")
        names = [entry["name"] for entry in response.json() if entry.get("name")]
        return sorted(f"{folder}/{name}" if folder else name for name in names)

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        marker = f"/storage/v1/object/public/{self.bucket}/"
        if marker not in url:
            return None
        key = unquote(urlsplit(url.split(marker, 1)[1]).path).strip()
        return key or None


def build_object_store(config) -> ObjectStore:
    """Object store for a loaded ``ShelfConfig``."""
    storage = config.storage
    if storage.backend == "supabase":
        return SupabaseObjectStore(storage.supabase_url, storage.supabase_key, storage.bucket)
    if storage.backend != "local":
        raise ValueError(f"Unknown storage backend: {storage.backend}")
    return LocalObjectStore(storage.path, storage.public_url, config.auth.secret_key)
