"""In-process stores"""

from typing import Dict, List, Optional

from ..models import Document, DocumentSource


class InMemoryDocumentSink:
    """Documents keyed by URL"""

    def __init__(self):
        self.documents: Dict[str, Document] = {}

    async def save(self, document: Document) -> bool:
        self.documents[document.url] = document
        return True

    async def exists_by_url(self, url: str) -> bool:
        return url in self.documents

    def __len__(self) -> int:
        return len(self.documents)


class InMemorySourceRegistry:
    def __init__(self, sources: Optional[List[DocumentSource]] = None):
        self._sources: Dict[str, DocumentSource] = {}
        for source in sources or []:
            self._sources[source.id] = source

    async def find_by_id(self, source_id: str) -> Optional[DocumentSource]:
        return self._sources.get(source_id)

    async def find_by_name(self, name: str) -> Optional[DocumentSource]:
        for source in self._sources.values():
            if source.name == name:
                return source
        return None

    async def find_all(self) -> List[DocumentSource]:
        return list(self._sources.values())

    async def save(self, source: DocumentSource) -> None:
        self._sources[source.id] = source
