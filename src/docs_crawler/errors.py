"""Error taxonomy for the crawler service"""

from typing import Any, Dict, Optional


class DocsCrawlerError(Exception):
    """Base error carrying a machine readable code and details."""

    code = "DOCS_CRAWLER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class ConfigurationError(DocsCrawlerError):
    code = "CONFIGURATION_ERROR"


class ValidationError(DocsCrawlerError):
    """Bad job settings or a missing source, raised before a job starts."""
    code = "VALIDATION_ERROR"


class SourceNotFoundError(ValidationError):
    code = "SOURCE_NOT_FOUND"

    def __init__(self, source: str):
        super().__init__(f"Source not found: {source}", {"source": source})
        self.source = source


class JobNotFoundError(DocsCrawlerError):
    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        super().__init__(f"Crawl job not found: {job_id}", {"job_id": job_id})
        self.job_id = job_id


class BatchNotFoundError(DocsCrawlerError):
    code = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        super().__init__(f"Batch job not found: {batch_id}", {"batch_id": batch_id})
        self.batch_id = batch_id


class FetchError(DocsCrawlerError):
    """Per-URL acquisition failure. Retried, never fatal to the job."""
    code = "FETCH_ERROR"
    retryable = True

    def __init__(self, url: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"url": url, **(details or {})})
        self.url = url


class FetchTimeoutError(FetchError):
    code = "FETCH_TIMEOUT"

    def __init__(self, url: str, timeout: float):
        super().__init__(
            url,
            f"Timed out after {timeout:.1f}s fetching {url}",
            {"timeout": timeout}
        )
        self.timeout = timeout


class FetchNetworkError(FetchError):
    code = "FETCH_NETWORK_ERROR"

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(url, message, {"status_code": status_code})
        self.status_code = status_code


class UnsupportedContentError(FetchError):
    code = "UNSUPPORTED_CONTENT"
    retryable = False

    def __init__(self, url: str, content_type: str):
        super().__init__(
            url,
            f"Content type not allowed: {content_type}",
            {"content_type": content_type}
        )
        self.content_type = content_type


class ContentPersistError(DocsCrawlerError):
    """The document sink rejected a single page."""
    code = "CONTENT_PERSIST_ERROR"


class JobInfrastructureError(DocsCrawlerError):
    """A failure that aborts the whole job."""
    code = "JOB_INFRASTRUCTURE_ERROR"
