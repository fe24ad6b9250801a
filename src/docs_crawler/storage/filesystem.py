"""File-backed document store and source registry"""

import asyncio
import json
import os
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import aiofiles.os
import structlog

from ..errors import ContentPersistError, JobInfrastructureError
from ..models import Document, DocumentSource

logger = structlog.get_logger(__name__)


async def atomic_write(path: Path, data: str):
    """Write to a temp file next to the target, then rename it into place."""
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(data)
        await aiofiles.os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            await aiofiles.os.remove(tmp_path)
        raise


class FileSystemDocumentSink:
    """
    One JSON file per document plus a URL index.

    Layout:
        <root>/<document id>.json
        <root>/index.json   {url: document id}
    """

    INDEX_FILE = "index.json"

    def __init__(self, root: str):
        self.root = Path(root)
        self._index: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Load the URL index once. Concurrent first callers share one load."""
        async with self._lock:
            if self._index is not None:
                return

            try:
                self.root.mkdir(parents=True, exist_ok=True)
                index_path = self.root / self.INDEX_FILE
                if index_path.exists():
                    async with aiofiles.open(index_path, "r", encoding="utf-8") as f:
                        self._index = json.loads(await f.read())
                else:
                    self._index = {}
            except (OSError, ValueError) as e:
                raise JobInfrastructureError(f"Document store unavailable: {e}", {"root": str(self.root)}) from e

        logger.info("Document store ready", root=str(self.root), documents=len(self._index))

    async def save(self, document: Document) -> bool:
        if self._index is None:
            await self.initialize()

        path = self.root / f"{document.id}.json"
        try:
            await atomic_write(path, document.model_dump_json(indent=2))

            async with self._lock:
                self._index[document.url] = document.id
                await atomic_write(
                    self.root / self.INDEX_FILE,
                    json.dumps(self._index, indent=2, sort_keys=True)
                )
        except OSError as e:
            logger.error("Failed to save document", url=document.url, error=str(e))
            raise ContentPersistError(
                f"Failed to save document: {document.url}",
                {"url": document.url, "error": str(e)}
            ) from e

        return True

    async def exists_by_url(self, url: str) -> bool:
        if self._index is None:
            await self.initialize()
        return url in self._index

    async def get_by_url(self, url: str) -> Optional[Document]:
        if self._index is None:
            await self.initialize()

        document_id = self._index.get(url)
        if not document_id:
            return None

        async with aiofiles.open(self.root / f"{document_id}.json", "r", encoding="utf-8") as f:
            return Document.model_validate_json(await f.read())


class JsonSourceRegistry:
    """Sources kept in a single JSON array file"""

    def __init__(self, path: str):
        self.path = Path(path)
        self._sources: Optional[Dict[str, DocumentSource]] = None
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, DocumentSource]:
        if self._sources is not None:
            return self._sources

        async with self._lock:
            if self._sources is None:
                try:
                    if self.path.exists():
                        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                            raw = json.loads(await f.read() or "[]")
                    else:
                        raw = []
                    self._sources = {
                        source.id: source
                        for source in (DocumentSource.model_validate(item) for item in raw)
                    }
                except (OSError, ValueError) as e:
                    raise JobInfrastructureError(f"Source registry unavailable: {e}", {"path": str(self.path)}) from e

        return self._sources

    async def find_by_id(self, source_id: str) -> Optional[DocumentSource]:
        return (await self._load()).get(source_id)

    async def find_by_name(self, name: str) -> Optional[DocumentSource]:
        for source in (await self._load()).values():
            if source.name == name:
                return source
        return None

    async def find_all(self) -> List[DocumentSource]:
        return list((await self._load()).values())

    async def save(self, source: DocumentSource) -> None:
        sources = await self._load()
        async with self._lock:
            sources[source.id] = source
            payload = json.dumps(
                [s.model_dump(mode="json") for s in sources.values()],
                indent=2
            )
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                await atomic_write(self.path, payload)
            except OSError as e:
                raise JobInfrastructureError(f"Cannot write source registry: {e}") from e
