"""Interfaces of the stores the crawler talks to"""

from typing import List, Optional, Protocol

from ..models import BatchJob, Document, DocumentSource, JobInfo


class DocumentSink(Protocol):
    """
    Receives crawled documents.

    save() returns False or raises ContentPersistError when one document
    cannot be stored; it raises JobInfrastructureError when the store as a
    whole is unusable.
    """

    async def save(self, document: Document) -> bool:
        ...

    async def exists_by_url(self, url: str) -> bool:
        ...


class SourceRegistry(Protocol):
    async def find_by_id(self, source_id: str) -> Optional[DocumentSource]:
        ...

    async def find_by_name(self, name: str) -> Optional[DocumentSource]:
        ...

    async def find_all(self) -> List[DocumentSource]:
        ...

    async def save(self, source: DocumentSource) -> None:
        ...


class JobSnapshotStore(Protocol):
    """Optional persistence of job and batch snapshots"""

    async def save_job(self, job: JobInfo) -> None:
        ...

    async def get_job(self, job_id: str) -> Optional[JobInfo]:
        ...

    async def save_batch(self, batch: BatchJob) -> None:
        ...
