"""Report artifact storage (local directory or S3/MinIO)."""
from __future__ import annotations

import asyncio
import hashlib
import json
from pathlib import Path
from typing import Any

import aioboto3

from ..config import get_settings


class ArtifactStorage:
    """Persist report artifacts under content-hash keys.

    Without a configured bucket artifacts go to ``storage.artifact_dir`` and
    references are ``file://`` URIs; otherwise they are ``s3://`` URIs.
    """

    def __init__(self) -> None:
        self._settings = get_settings().storage

    async def put_json(self, data: dict[str, Any]) -> str:
        payload = json.dumps(data, sort_keys=True, ensure_ascii=False).encode("utf-8")
        return await self._put_bytes(payload, suffix=".json")

    async def put_text(self, text: str, suffix: str = ".txt") -> str:
        return await self._put_bytes(text.encode("utf-8"), suffix=suffix)

    async def get_json(self, ref: str) -> dict[str, Any]:
        return json.loads(await self._get_bytes(ref))

    async def get_text(self, ref: str) -> str:
        return (await self._get_bytes(ref)).decode("utf-8")

    async def _put_bytes(self, payload: bytes, suffix: str = "") -> str:
        digest = hashlib.sha256(payload).hexdigest()
        key = f"artifacts/{digest}{suffix}"

        if not self._settings.s3_bucket:
            path = Path(self._settings.artifact_dir) / f"{digest}{suffix}"
            await asyncio.to_thread(_write_local, path, payload)
            return f"file://{path.resolve().as_posix()}"

        session = aioboto3.Session()
        async with session.client(
            "s3",
            endpoint_url=self._settings.s3_endpoint,
            region_name=self._settings.s3_region,
        ) as client:
            await client.put_object(Bucket=self._settings.s3_bucket, Key=key, Body=payload)
        return f"s3://{self._settings.s3_bucket}/{key}"

    async def _get_bytes(self, ref: str) -> bytes:
        if ref.startswith("file://"):
            return await asyncio.to_thread(Path(ref[len("file://") :]).read_bytes)
        if not ref.startswith("s3://"):
            raise ValueError(f"Unsupported artifact reference: {ref}")
        bucket, _, key = ref[len("s3://") :].partition("/")
        session = aioboto3.Session()
        async with session.client(
            "s3",
            endpoint_url=self._settings.s3_endpoint,
            region_name=self._settings.s3_region,
        ) as client:
            response = await client.get_object(Bucket=bucket, Key=key)
            async with response["Body"] as stream:
                return await stream.read()


def _write_local(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)


__all__ = ["ArtifactStorage"]
