# storage_gateway/core/storage_service.py
"""
Storage orchestration service.

Single entry point used by the HTTP layer and the scheduler. It resolves
adapters through the provider registry, persists the file catalog, encrypts
the credentials used for every stored copy and records a performance metric
for each operation, on success and on failure.

Single-provider operations raise the first error they hit. Fan-out
operations (bulk, multi-provider, retry) always run every item to completion
and report per-item outcomes in the result objects of `core.results`.
"""
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from storage_gateway.core.results import (
    MAX_PAGE_SIZE,
    SORT_FIELDS,
    SORT_ORDERS,
    BulkItemResult,
    BulkResult,
    MetadataPatch,
    MultiProviderResult,
    ProviderOutcome,
    RetryOperation,
    RetryResult,
    SearchCriteria,
    SearchPage,
    UploadedFile,
)
from storage_gateway.core.validation import MAX_FILE_SIZE, validate_upload
from storage_gateway.db.models import FileRecord
from storage_gateway.db.repositories.file_repository import FileRepository
from storage_gateway.db.repositories.tag_repository import TagRepository
from storage_gateway.errors import (
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from storage_gateway.monitoring.context import set_request_context
from storage_gateway.monitoring.logger import log
from storage_gateway.monitoring.metrics import PerformanceMetricsCollector, get_metrics_collector
from storage_gateway.providers.base import (
    CloudStorageProvider,
    UploadResult,
    generate_storage_name,
    guess_content_type,
    normalize_folder_path,
)
from storage_gateway.providers.config import ProviderConfigResolver
from storage_gateway.providers.registry import ProviderRegistry, normalize_provider_name
from storage_gateway.security.encryption import decrypt_json, encrypt_json

MAX_PROVIDERS = 6
MAX_RETRIES = 2
RETRY_BASE_DELAY = 1.0

UPLOADED = "uploaded"
FAILED = "failed"


class StorageService:
    """
    Args:
        registry: provider registry; defaults to the process-wide one
        session_factory: callable returning an `AsyncSession` context manager
        config_resolver: source of the encryption secret
        metrics: performance collector
        sleep: awaitable used between retry attempts
        retry_base_delay: seconds; attempt `n` waits `base * 2**n`
        max_upload_size: bytes accepted per file
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        session_factory: Optional[Callable[[], Any]] = None,
        config_resolver: Optional[ProviderConfigResolver] = None,
        metrics: Optional[PerformanceMetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        retry_base_delay: float = RETRY_BASE_DELAY,
        max_upload_size: int = MAX_FILE_SIZE,
    ):
        if registry is None:
            from storage_gateway.providers.registry import default_registry

            registry = default_registry
        if session_factory is None:
            from storage_gateway.db.session import SessionLocal

            session_factory = SessionLocal
        self.registry = registry
        self.session_factory = session_factory
        self.config_resolver = config_resolver if config_resolver is not None else ProviderConfigResolver()
        self.metrics = metrics if metrics is not None else get_metrics_collector()
        self.sleep = sleep
        self.retry_base_delay = retry_base_delay
        self.max_upload_size = max_upload_size

    # -- helpers -----------------------------------------------------------

    def _adapter(self, provider: str) -> CloudStorageProvider:
        return self.registry.resolve(provider)

    def _validate_providers(self, providers: Sequence[str]) -> List[str]:
        names = [normalize_provider_name(p) for p in providers or []]
        if not 1 <= len(names) <= MAX_PROVIDERS:
            raise ValidationError(
                f"Between 1 and {MAX_PROVIDERS} providers are required",
                details={"providers": list(providers or [])},
            )
        if len(set(names)) != len(names):
            raise ValidationError("Duplicate providers are not allowed", details={"providers": names})
        return names

    async def _encrypt_credentials(self, adapter: CloudStorageProvider, secret: str) -> str:
        credentials = adapter.get_encryptable_credentials()
        # scrypt is CPU bound
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, encrypt_json, credentials, secret)

    async def _compensate(self, adapter: CloudStorageProvider, storage_name: str, folder: str) -> None:
        """Remove a remote copy whose catalog entry could not be written."""
        try:
            await adapter.delete_file(storage_name, folder)
            log("WARNING", f"Removed orphaned upload '{storage_name}'", module="storage_service", provider=adapter.name)
        except Exception as exc:
            log(
                "ERROR",
                f"Failed to remove orphaned upload '{storage_name}': {exc}",
                module="storage_service",
                provider=adapter.name,
            )

    @staticmethod
    def _ref_name(record: FileRecord, ref) -> str:
        return ref.storage_name or record.storage_name

    async def _get_record(self, repo: FileRepository, file_id: str) -> FileRecord:
        record = await repo.get(file_id)
        if record is None:
            raise NotFoundError(f"File {file_id} not found", details={"file_id": file_id})
        return record

    # -- single provider ---------------------------------------------------

    async def upload_file(
        self,
        upload: UploadedFile,
        provider: str,
        folder_path: Optional[str] = None,
        description: Optional[str] = None,
        tags: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
        is_public: bool = False,
        expires_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Upload to one provider and catalog the copy.

        No catalog row is written when the upload fails; when the catalog write
        fails the remote copy is deleted again before the error propagates.
        """
        name = normalize_provider_name(provider)
        set_request_context(provider=name, operation="upload")

        async with self.metrics.track("upload", name, upload.size):
            adapter = self._adapter(name)
            folder = normalize_folder_path(folder_path)
            validate_upload(upload, self.max_upload_size)
            secret = self.config_resolver.get_encryption_secret()
            content_type = upload.content_type or guess_content_type(upload.filename)
            result = await adapter.upload_file(
                upload.content, generate_storage_name(upload.filename), folder, content_type
            )
            try:
                credentials = await self._encrypt_credentials(adapter, secret)
                async with self.session_factory() as db:
                    record = await FileRepository(db).create(
                        original_name=upload.filename,
                        size=upload.size,
                        mime_type=content_type,
                        storage_name=result.storage_name,
                        url=result.url,
                        refs=[
                            {
                                "provider": adapter.name,
                                "storage_name": result.storage_name,
                                "url": result.url,
                                "status": UPLOADED,
                                "encrypted_credentials": credentials,
                            }
                        ],
                        folder_path=folder,
                        description=description,
                        tags=tags,
                        metadata=metadata,
                        is_public=is_public,
                        expires_at=expires_at,
                    )
                    data = record.to_dict()
            except Exception as exc:
                log("ERROR", f"Persisting upload failed: {exc}", module="storage_service", provider=adapter.name)
                await self._compensate(adapter, result.storage_name, folder)
                raise

        log(
            "INFO",
            f"File '{upload.filename}' uploaded as '{result.storage_name}'",
            module="storage_service",
            provider=adapter.name,
            file_id=data["id"],
        )
        return data

    async def list_files(self, provider: str, folder_path: Optional[str] = None) -> List[Dict[str, Any]]:
        name = normalize_provider_name(provider)
        set_request_context(provider=name, operation="list")
        async with self.metrics.track("list", name):
            items = await self._adapter(name).list_files(folder_path)
        return [item.to_dict() for item in items]

    async def download_file(self, provider: str, file_id: str, folder_path: Optional[str] = None) -> bytes:
        name = normalize_provider_name(provider)
        set_request_context(provider=name, operation="download")
        async with self.metrics.track("download", name):
            content = await self._adapter(name).download_file(file_id, folder_path)
        return content

    async def delete_file(self, provider: str, file_id: str, folder_path: Optional[str] = None) -> Dict[str, Any]:
        """Delete on the provider first, then drop matching catalog copies."""
        name = normalize_provider_name(provider)
        set_request_context(provider=name, operation="delete")
        async with self.metrics.track("delete", name):
            adapter = self._adapter(name)
            folder = normalize_folder_path(folder_path)
            await adapter.delete_file(file_id, folder)
            async with self.session_factory() as db:
                repo = FileRepository(db)
                records = await repo.find_by_storage_name(adapter.name, file_id, folder or None)
                for record in records:
                    await repo.remove_refs(record.id, [adapter.name])
        return {"provider": adapter.name, "file_id": file_id, "catalog_records": len(records)}

    async def create_folder(self, provider: str, folder_path: str) -> Dict[str, Any]:
        name = normalize_provider_name(provider)
        set_request_context(provider=name, operation="create-folder")
        async with self.metrics.track("create-folder", name):
            await self._adapter(name).create_folder(folder_path)
        return {"provider": name, "folder_path": normalize_folder_path(folder_path)}

    async def delete_folder(self, provider: str, folder_path: str) -> Dict[str, Any]:
        name = normalize_provider_name(provider)
        set_request_context(provider=name, operation="delete-folder")
        async with self.metrics.track("delete-folder", name):
            adapter = self._adapter(name)
            await adapter.delete_folder(folder_path)
            folder = normalize_folder_path(folder_path)
            async with self.session_factory() as db:
                repo = FileRepository(db)
                records = await repo.list_under_folder(adapter.name, folder)
                for record in records:
                    await repo.remove_refs(record.id, [adapter.name])
        return {"provider": adapter.name, "folder_path": folder, "catalog_records": len(records)}

    # -- fan-out -----------------------------------------------------------

    async def _upload_to(
        self, adapter: CloudStorageProvider, upload: UploadedFile, storage_name: str, folder: str, content_type: str
    ) -> UploadResult:
        async with self.metrics.track("upload", adapter.name, upload.size):
            return await adapter.upload_file(upload.content, storage_name, folder, content_type)

    async def upload_multi(
        self,
        upload: UploadedFile,
        providers: Sequence[str],
        folder_path: Optional[str] = None,
        description: Optional[str] = None,
        tags: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
        is_public: bool = False,
        expires_at: Optional[datetime] = None,
    ) -> MultiProviderResult:
        """Upload one file to several providers concurrently.

        Provider failures never raise: every outcome is reported. One catalog
        record is written per call, with one ref per provider, as soon as at
        least one copy succeeded.
        """
        set_request_context(operation="multi-upload")
        async with self.metrics.track("multi-upload", file_size=upload.size):
            names = self._validate_providers(providers)
            adapters = [self._adapter(n) for n in names]
            folder = normalize_folder_path(folder_path)
            validate_upload(upload, self.max_upload_size)
            secret = self.config_resolver.get_encryption_secret()
            content_type = upload.content_type or guess_content_type(upload.filename)
            storage_name = generate_storage_name(upload.filename)

            raw = await asyncio.gather(
                *(self._upload_to(a, upload, storage_name, folder, content_type) for a in adapters),
                return_exceptions=True,
            )

            outcomes: List[ProviderOutcome] = []
            refs: List[Dict[str, Any]] = []
            for adapter, result in zip(adapters, raw):
                if isinstance(result, BaseException):
                    log(
                        "WARNING",
                        f"Multi-provider upload failed: {result}",
                        module="storage_service",
                        provider=adapter.name,
                    )
                    outcomes.append(ProviderOutcome(provider=adapter.name, success=False, error=str(result)))
                    refs.append({"provider": adapter.name, "status": FAILED, "error": str(result)})
                    continue
                outcomes.append(
                    ProviderOutcome(
                        provider=adapter.name, success=True, url=result.url, storage_name=result.storage_name
                    )
                )
                refs.append(
                    {
                        "provider": adapter.name,
                        "storage_name": result.storage_name,
                        "url": result.url,
                        "status": UPLOADED,
                    }
                )

            summary = MultiProviderResult(file_id=None, original_name=upload.filename, results=outcomes)
            if not summary.successful:
                log("ERROR", "Multi-provider upload failed on every provider", module="storage_service", providers=names)
                return summary

            succeeded = [(a, o) for a, o in zip(adapters, outcomes) if o.success]
            try:
                uploaded_refs = [ref for ref in refs if ref["status"] == UPLOADED]
                by_name = {a.name: a for a, _ in succeeded}
                blobs = await asyncio.gather(
                    *(self._encrypt_credentials(by_name[ref["provider"]], secret) for ref in uploaded_refs)
                )
                for ref, blob in zip(uploaded_refs, blobs):
                    ref["encrypted_credentials"] = blob
                first = succeeded[0][1]
                async with self.session_factory() as db:
                    record = await FileRepository(db).create(
                        original_name=upload.filename,
                        size=upload.size,
                        mime_type=content_type,
                        storage_name=first.storage_name,
                        url=first.url,
                        refs=refs,
                        folder_path=folder,
                        description=description,
                        tags=tags,
                        metadata=metadata,
                        is_public=is_public,
                        expires_at=expires_at,
                    )
                    summary.file_id = record.id
            except Exception as exc:
                log("ERROR", f"Persisting multi-provider upload failed: {exc}", module="storage_service")
                await asyncio.gather(*(self._compensate(a, o.storage_name, folder) for a, o in succeeded))
                raise

        log(
            "INFO",
            f"Multi-provider upload of '{upload.filename}': {summary.successful}/{len(outcomes)} succeeded",
            module="storage_service",
            file_id=summary.file_id,
        )
        return summary

    async def bulk_upload(
        self,
        uploads: Sequence[UploadedFile],
        provider: str,
        folder_path: Optional[str] = None,
        tags: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        is_public: bool = False,
    ) -> BulkResult:
        """Upload each file independently; one failure never aborts the batch."""
        name = normalize_provider_name(provider)
        tags = list(tags)
        summary = BulkResult()
        set_request_context(provider=name, operation="bulk-upload")
        async with self.metrics.track("bulk-upload", name, sum(u.size for u in uploads or [])):
            adapter = self._adapter(name)
            if not uploads:
                raise ValidationError("No files provided")
            for index, upload in enumerate(uploads):
                try:
                    data = await self.upload_file(
                        upload,
                        adapter.name,
                        folder_path,
                        description=description,
                        tags=tags,
                        metadata=dict(metadata or {}),
                        is_public=is_public,
                    )
                except Exception as exc:
                    summary.results.append(
                        BulkItemResult(index=index, name=upload.filename, success=False, error=str(exc))
                    )
                    continue
                summary.results.append(
                    BulkItemResult(
                        index=index, name=upload.filename, success=True, file_id=data["id"], url=data["url"]
                    )
                )
        log(
            "INFO",
            f"Bulk upload finished: {summary.successful} succeeded, {summary.failed} failed",
            module="storage_service",
            provider=adapter.name,
        )
        return summary

    async def _delete_copies(
        self, record: FileRecord, providers: Optional[Iterable[str]] = None
    ) -> Tuple[List[str], Dict[str, str]]:
        """Delete the record's remote copies, concurrently.

        Copies already gone on the provider count as deleted. Refs of failed
        uploads have no remote copy and are dropped without a call.
        """
        wanted = set(providers) if providers is not None else None
        refs = [r for r in record.storage_refs if wanted is None or r.provider in wanted]
        folder = record.folder_path or ""

        async def delete_one(ref):
            if ref.status != UPLOADED:
                return
            adapter = self._adapter(ref.provider)
            async with self.metrics.track("delete", adapter.name):
                try:
                    await adapter.delete_file(self._ref_name(record, ref), folder)
                except NotFoundError:
                    log(
                        "WARNING",
                        f"Copy of {record.id} already absent",
                        module="storage_service",
                        provider=ref.provider,
                    )

        raw = await asyncio.gather(*(delete_one(r) for r in refs), return_exceptions=True)
        deleted: List[str] = []
        errors: Dict[str, str] = {}
        for ref, outcome in zip(refs, raw):
            if isinstance(outcome, BaseException):
                errors[ref.provider] = str(outcome)
            else:
                deleted.append(ref.provider)
        return deleted, errors

    async def bulk_delete(self, file_ids: Sequence[str], provider: Optional[str] = None) -> BulkResult:
        """Delete catalog files and their remote copies, one id at a time."""
        name = normalize_provider_name(provider) if provider is not None else None
        summary = BulkResult()
        set_request_context(provider=name, operation="bulk-delete")
        async with self.metrics.track("bulk-delete", name):
            if not file_ids:
                raise ValidationError("No file ids provided")
            only = [self._adapter(name).name] if name is not None else None
            async with self.session_factory() as db:
                repo = FileRepository(db)
                for index, file_id in enumerate(file_ids):
                    record = await repo.get(file_id)
                    if record is None:
                        summary.results.append(
                            BulkItemResult(index=index, name=file_id, success=False, file_id=file_id, error="File not found")
                        )
                        continue
                    if only and not any(r.provider in only for r in record.storage_refs):
                        summary.results.append(
                            BulkItemResult(
                                index=index,
                                name=record.original_name,
                                success=False,
                                file_id=file_id,
                                error=f"No copy stored on {only[0]}",
                            )
                        )
                        continue
                    deleted, errors = await self._delete_copies(record, only)
                    if deleted:
                        await repo.remove_refs(file_id, deleted)
                    summary.results.append(
                        BulkItemResult(
                            index=index,
                            name=record.original_name,
                            success=not errors,
                            file_id=file_id,
                            error="; ".join(f"{p}: {e}" for p, e in errors.items()) or None,
                        )
                    )
        log(
            "INFO",
            f"Bulk delete finished: {summary.successful} succeeded, {summary.failed} failed",
            module="storage_service",
        )
        return summary

    async def delete_multi(self, file_id: str, providers: Sequence[str]) -> MultiProviderResult:
        """Delete one catalog file from several providers concurrently."""
        set_request_context(operation="multi-delete")
        async with self.metrics.track("multi-delete"):
            names = self._validate_providers(providers)
            names = [self._adapter(n).name for n in names]
            async with self.session_factory() as db:
                repo = FileRepository(db)
                record = await self._get_record(repo, file_id)
                stored = {r.provider for r in record.storage_refs}
                deleted, errors = await self._delete_copies(record, [n for n in names if n in stored])
                outcomes = []
                for name in names:
                    if name not in stored:
                        outcomes.append(ProviderOutcome(provider=name, success=False, error=f"No copy stored on {name}"))
                    elif name in errors:
                        outcomes.append(ProviderOutcome(provider=name, success=False, error=errors[name]))
                    else:
                        outcomes.append(ProviderOutcome(provider=name, success=True))
                if deleted:
                    await repo.remove_refs(file_id, deleted)
        return MultiProviderResult(file_id=file_id, original_name=record.original_name, results=outcomes)

    async def _record_retry(self, operation: RetryOperation, adapter: CloudStorageProvider, status: str, **fields) -> None:
        async with self.session_factory() as db:
            await FileRepository(db).upsert_ref(operation.file_id, adapter.name, status, **fields)

    async def _retry_one(self, operation: RetryOperation, secret: str) -> RetryResult:
        try:
            adapter = self._adapter(operation.provider)
        except ValidationError as exc:
            return RetryResult(provider=operation.provider, success=False, attempts=0, final_attempt=True, error=str(exc))
        upload = operation.upload
        storage_name = generate_storage_name(upload.filename)
        content_type = upload.content_type or guess_content_type(upload.filename)
        max_attempts = MAX_RETRIES + 1
        error = None
        attempt = 0
        for attempt in range(1, max_attempts + 1):
            try:
                async with self.metrics.track("retry-upload", adapter.name, upload.size):
                    result = await adapter.upload_file(upload.content, storage_name, operation.folder_path, content_type)
            except (ConfigurationError, ValidationError) as exc:
                # not transient
                error = str(exc)
                break
            except Exception as exc:
                error = str(exc)
                log(
                    "WARNING",
                    f"Retry attempt {attempt}/{max_attempts} failed: {exc}",
                    module="storage_service",
                    provider=adapter.name,
                )
                if attempt < max_attempts:
                    await self.sleep(self.retry_base_delay * 2 ** attempt)
                continue
            if operation.file_id:
                try:
                    await self._record_retry(
                        operation,
                        adapter,
                        UPLOADED,
                        url=result.url,
                        encrypted_credentials=await self._encrypt_credentials(adapter, secret),
                        storage_name=result.storage_name,
                    )
                except Exception as exc:
                    log("ERROR", f"Persisting retried upload failed: {exc}", module="storage_service", provider=adapter.name)
                    await self._compensate(adapter, result.storage_name, normalize_folder_path(operation.folder_path))
                    return RetryResult(
                        provider=adapter.name,
                        success=False,
                        attempts=attempt,
                        final_attempt=attempt == max_attempts,
                        error=f"Catalog update failed: {exc}",
                    )
            log("INFO", f"Upload succeeded on attempt {attempt}", module="storage_service", provider=adapter.name)
            return RetryResult(
                provider=adapter.name,
                success=True,
                attempts=attempt,
                final_attempt=attempt == max_attempts,
                url=result.url,
                storage_name=result.storage_name,
            )

        if operation.file_id:
            try:
                await self._record_retry(operation, adapter, FAILED, error=error)
            except Exception as exc:
                log("ERROR", f"Recording failed retry failed: {exc}", module="storage_service", provider=adapter.name)
        log("ERROR", f"Upload failed after {attempt} attempt(s): {error}", module="storage_service", provider=adapter.name)
        return RetryResult(
            provider=adapter.name, success=False, attempts=attempt, final_attempt=True, error=error
        )

    async def retry_failed_uploads(self, operations: Sequence[RetryOperation]) -> List[RetryResult]:
        """Retry failed uploads with exponential backoff, at most twice each."""
        set_request_context(operation="retry-upload")
        async with self.metrics.track("bulk-retry"):
            if not operations:
                raise ValidationError("No operations provided")
            secret = self.config_resolver.get_encryption_secret()
            return list(await asyncio.gather(*(self._retry_one(op, secret) for op in operations)))

    # -- catalog -----------------------------------------------------------

    async def search(self, criteria: SearchCriteria) -> SearchPage:
        async with self.metrics.track("search"):
            if criteria.page < 1:
                raise ValidationError("Page must be at least 1", details={"page": criteria.page})
            if not 1 <= criteria.limit <= MAX_PAGE_SIZE:
                raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}", details={"limit": criteria.limit})
            if criteria.sort_by not in SORT_FIELDS:
                raise ValidationError(f"Invalid sort field: {criteria.sort_by}", details={"allowed": list(SORT_FIELDS)})
            if criteria.sort_order not in SORT_ORDERS:
                raise ValidationError(f"Invalid sort order: {criteria.sort_order}", details={"allowed": list(SORT_ORDERS)})
            folder = None if criteria.folder_path is None else normalize_folder_path(criteria.folder_path)
            provider = normalize_provider_name(criteria.provider) if criteria.provider else None

            async with self.session_factory() as db:
                records, total = await FileRepository(db).search(
                    name=criteria.name,
                    mime_type=criteria.mime_type,
                    tags=criteria.tags,
                    folder_path=folder,
                    is_public=criteria.is_public,
                    provider=provider,
                    page=criteria.page,
                    limit=criteria.limit,
                    sort_by=criteria.sort_by,
                    sort_order=criteria.sort_order,
                )
                items = [r.to_dict() for r in records]
        return SearchPage(items=items, total=total, page=criteria.page, limit=criteria.limit)

    async def get_file(self, file_id: str) -> Dict[str, Any]:
        async with self.metrics.track("get-file"):
            async with self.session_factory() as db:
                record = await self._get_record(FileRepository(db), file_id)
                return record.to_dict()

    async def update_metadata(self, file_id: str, patch: MetadataPatch) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if patch.description is not None:
            fields["description"] = patch.description
        if patch.metadata is not None:
            fields["extra_metadata"] = patch.metadata
        if patch.is_public is not None:
            fields["is_public"] = patch.is_public
        if patch.expires_at is not None:
            fields["expires_at"] = patch.expires_at
        async with self.metrics.track("update-metadata"):
            async with self.session_factory() as db:
                record = await FileRepository(db).update(file_id, tags=patch.tags, **fields)
                if record is None:
                    raise NotFoundError(f"File {file_id} not found", details={"file_id": file_id})
                return record.to_dict()

    async def download_catalog_file(self, file_id: str) -> Tuple[bytes, Dict[str, Any]]:
        """Fetch a cataloged file from its first available copy."""
        async with self.metrics.track("catalog-download"):
            async with self.session_factory() as db:
                repo = FileRepository(db)
                record = await self._get_record(repo, file_id)
                refs = [r for r in record.storage_refs if r.status == UPLOADED]
                if not refs:
                    raise NotFoundError(f"File {file_id} has no stored copy", details={"file_id": file_id})
                last_error: Optional[Exception] = None
                for ref in refs:
                    try:
                        content = await self.download_file(ref.provider, self._ref_name(record, ref), record.folder_path)
                    except Exception as exc:
                        log("WARNING", f"Download from copy failed: {exc}", module="storage_service", provider=ref.provider)
                        last_error = exc
                        continue
                    record = await repo.record_download(file_id)
                    return content, record.to_dict()
                raise last_error

    async def decrypt_credentials(self, file_id: str, provider: str) -> Dict[str, Any]:
        """Credentials stored with a copy (administrative use)."""
        name = normalize_provider_name(provider)
        async with self.metrics.track("decrypt-credentials", name):
            async with self.session_factory() as db:
                record = await self._get_record(FileRepository(db), file_id)
                ref = next((r for r in record.storage_refs if r.provider == name), None)
            if ref is None or not ref.encrypted_credentials:
                raise NotFoundError(
                    f"No stored credentials for {name} on file {file_id}",
                    details={"file_id": file_id, "provider": name},
                )
            secret = self.config_resolver.get_encryption_secret()
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, decrypt_json, ref.encrypted_credentials, secret)

    async def purge_expired_files(self, now: Optional[datetime] = None) -> BulkResult:
        """Delete every cataloged file whose expiry has passed."""
        async with self.metrics.track("purge-expired"):
            async with self.session_factory() as db:
                expired = await FileRepository(db).list_expired(now or datetime.utcnow())
                ids = [r.id for r in expired]
            if not ids:
                return BulkResult()
            return await self.bulk_delete(ids)

    # -- tags --------------------------------------------------------------

    async def create_tag(self, name: str, color: Optional[str] = None, description: Optional[str] = None) -> Dict[str, Any]:
        async with self.metrics.track("create-tag"):
            name = (name or "").strip()
            if not name:
                raise ValidationError("Tag name is required")
            async with self.session_factory() as db:
                repo = TagRepository(db)
                if await repo.get_by_name(name):
                    raise ValidationError(f"Tag '{name}' already exists", details={"name": name})
                tag = await repo.create(name, color=color, description=description)
                return tag.to_dict()

    async def list_tags(self) -> List[Dict[str, Any]]:
        async with self.metrics.track("list-tags"):
            async with self.session_factory() as db:
                return [t.to_dict() for t in await TagRepository(db).list()]

    async def delete_tag(self, tag_id: str) -> None:
        async with self.metrics.track("delete-tag"):
            async with self.session_factory() as db:
                if not await TagRepository(db).delete(tag_id):
                    raise NotFoundError(f"Tag {tag_id} not found", details={"tag_id": tag_id})
