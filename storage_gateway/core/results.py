# storage_gateway/core/results.py
"""
Inputs and aggregate results of the orchestration service.

Fan-out operations never raise for per-provider or per-file failures; the
outcome of every item is reported here and `status` summarizes the whole:
`success` when every item succeeded, `failure` when none did, otherwise
`partial_failure`.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

SUCCESS = "success"
PARTIAL_FAILURE = "partial_failure"
FAILURE = "failure"

SORT_FIELDS = ("name", "size", "type", "created_at", "updated_at", "download_count")
SORT_ORDERS = ("asc", "desc")
MAX_PAGE_SIZE = 100


def aggregate_status(successful: int, total: int) -> str:
    if total and successful == total:
        return SUCCESS
    if successful == 0:
        return FAILURE
    return PARTIAL_FAILURE


@dataclass
class UploadedFile:
    """An upload intent: the bytes plus what the client said about them."""
    content: bytes
    filename: str
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ProviderOutcome:
    provider: str
    success: bool
    url: Optional[str] = None
    storage_name: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MultiProviderResult:
    file_id: Optional[str]
    original_name: str
    results: List[ProviderOutcome] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful

    @property
    def status(self) -> str:
        return aggregate_status(self.successful, len(self.results))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": self.file_id,
            "original_name": self.original_name,
            "status": self.status,
            "successful": self.successful,
            "failed": self.failed,
            "total": len(self.results),
            "results": [asdict(r) for r in self.results],
        }


@dataclass
class BulkItemResult:
    index: int
    name: str
    success: bool
    file_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BulkResult:
    results: List[BulkItemResult] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def status(self) -> str:
        return aggregate_status(self.successful, self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "successful": self.successful,
            "failed": self.failed,
            "total": self.total,
            "results": [asdict(r) for r in self.results],
        }


@dataclass
class RetryOperation:
    """A failed upload to try again against one provider."""
    provider: str
    upload: UploadedFile
    folder_path: Optional[str] = None
    file_id: Optional[str] = None


@dataclass
class RetryResult:
    provider: str
    success: bool
    attempts: int
    final_attempt: bool
    url: Optional[str] = None
    storage_name: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchCriteria:
    name: Optional[str] = None
    mime_type: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    folder_path: Optional[str] = None
    is_public: Optional[bool] = None
    provider: Optional[str] = None
    page: int = 1
    limit: int = 20
    sort_by: str = "created_at"
    sort_order: str = "desc"


@dataclass
class SearchPage:
    items: List[Dict[str, Any]]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
        }


@dataclass
class MetadataPatch:
    """Partial update; fields left as None are untouched."""
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    is_public: Optional[bool] = None
    expires_at: Optional[datetime] = None
