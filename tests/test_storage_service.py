"""Tests for the orchestration service over in-memory providers."""
from datetime import datetime, timedelta

import pytest

from storage_gateway.core.results import (
    FAILURE,
    PARTIAL_FAILURE,
    SUCCESS,
    MetadataPatch,
    RetryOperation,
    SearchCriteria,
    UploadedFile,
)
from storage_gateway.errors import (
    ConfigurationError,
    NotFoundError,
    ProviderError,
    UnsupportedProviderError,
    ValidationError,
)

from conftest import pdf


# -- single provider ------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_file_catalogs_one_copy(service, backends, metrics):
    data = await service.upload_file(pdf(), "alpha", "/docs/", tags=["finance"], metadata={"owner": "ops"})

    assert data["original_name"] == "report.pdf"
    assert data["storage_name"].endswith("_report.pdf")
    assert data["folder_path"] == "docs"
    assert data["tags"] == ["finance"]
    assert data["metadata"] == {"owner": "ops"}
    [ref] = data["providers"]
    assert ref["provider"] == "alpha" and ref["status"] == "uploaded"
    assert "encrypted_credentials" not in ref
    assert backends["alpha"].objects[f"docs/{data['storage_name']}"] == b"%PDF-1.4 demo"

    [metric] = metrics.get_metrics(operation="upload")
    assert metric.success and metric.provider == "alpha" and metric.file_size == 13


@pytest.mark.asyncio
async def test_invalid_upload_never_reaches_provider(service, backends, metrics):
    with pytest.raises(ValidationError):
        await service.upload_file(pdf(content=b""), "alpha")
    with pytest.raises(ValidationError):
        await service.upload_file(UploadedFile(content=b"MZ", filename="setup.exe"), "alpha")
    assert backends["alpha"].upload_calls == 0
    failures = metrics.get_metrics(operation="upload")
    assert len(failures) == 2
    assert all(m.success is False and m.provider == "alpha" for m in failures)
    assert failures[0].error == "File is empty"


@pytest.mark.asyncio
async def test_unknown_provider_is_rejected(service, metrics):
    with pytest.raises(UnsupportedProviderError) as exc_info:
        await service.upload_file(pdf(), "floppy")
    assert exc_info.value.supported == ["alpha", "beta", "gamma"]
    [metric] = metrics.get_metrics(operation="upload")
    assert metric.provider == "floppy" and metric.success is False


@pytest.mark.asyncio
async def test_failed_upload_writes_nothing_and_records_metric(service, backends, metrics):
    backends["alpha"].always_fail = True
    with pytest.raises(ProviderError):
        await service.upload_file(pdf(), "alpha")

    page = await service.search(SearchCriteria())
    assert page.total == 0
    [metric] = metrics.get_metrics(operation="upload")
    assert metric.success is False
    assert "alpha unavailable" in metric.error


@pytest.mark.asyncio
async def test_catalog_failure_removes_remote_copy(service, backends):
    backends["alpha"].fail_credentials = True
    with pytest.raises(RuntimeError):
        await service.upload_file(pdf(), "alpha")
    assert backends["alpha"].objects == {}
    assert (await service.search(SearchCriteria())).total == 0


@pytest.mark.asyncio
async def test_delete_file_drops_catalog_record(service, backends):
    data = await service.upload_file(pdf(), "alpha", "docs")

    result = await service.delete_file("alpha", data["storage_name"], "docs")

    assert result == {"provider": "alpha", "file_id": data["storage_name"], "catalog_records": 1}
    assert backends["alpha"].objects == {}
    with pytest.raises(NotFoundError):
        await service.get_file(data["id"])


@pytest.mark.asyncio
async def test_delete_folder_drops_catalog_refs_below_it(service, backends):
    await service.upload_file(pdf("a.pdf"), "alpha", "docs")
    await service.upload_file(pdf("b.pdf"), "alpha", "docs/2024")
    kept = await service.upload_file(pdf("c.pdf"), "alpha", "documents")

    result = await service.delete_folder("alpha", "docs")

    assert result["catalog_records"] == 2
    assert (await service.search(SearchCriteria())).total == 1
    assert (await service.get_file(kept["id"]))["original_name"] == "c.pdf"


@pytest.mark.asyncio
async def test_list_and_download_pass_through(service):
    data = await service.upload_file(pdf(), "beta")
    listing = await service.list_files("beta")
    assert [item["name"] for item in listing] == [data["storage_name"]]
    assert await service.download_file("beta", data["storage_name"]) == b"%PDF-1.4 demo"


# -- fan-out --------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_multi_reports_partial_failure(service, backends):
    backends["gamma"].always_fail = True

    result = await service.upload_multi(pdf(), ["alpha", "beta", "gamma"], "shared")

    assert result.status == PARTIAL_FAILURE
    assert (result.successful, result.failed) == (2, 1)
    failed = [r for r in result.results if not r.success]
    assert failed[0].provider == "gamma" and "gamma unavailable" in failed[0].error

    record = await service.get_file(result.file_id)
    refs = {r["provider"]: r for r in record["providers"]}
    assert set(refs) == {"alpha", "beta", "gamma"}
    assert refs["gamma"]["status"] == "failed"
    assert refs["gamma"]["error"]
    assert record["url"] == refs["alpha"]["url"]


@pytest.mark.asyncio
async def test_upload_multi_total_failure_writes_no_record(service, backends):
    for backend in backends.values():
        backend.always_fail = True

    result = await service.upload_multi(pdf(), ["alpha", "beta"])

    assert result.status == FAILURE
    assert result.file_id is None
    assert (await service.search(SearchCriteria())).total == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "providers",
    [[], ["alpha", "alpha"], ["alpha", "ALPHA"], ["p1", "p2", "p3", "p4", "p5", "p6", "p7"]],
)
async def test_upload_multi_rejects_bad_provider_lists(service, backends, providers):
    with pytest.raises(ValidationError):
        await service.upload_multi(pdf(), providers)
    assert all(b.upload_calls == 0 for b in backends.values())


@pytest.mark.asyncio
async def test_bulk_upload_continues_past_failures(service):
    files = [pdf(f"file{i}.pdf", content=b"" if i == 2 else b"data") for i in range(5)]

    result = await service.bulk_upload(files, "alpha", tags=["batch"])

    assert (result.successful, result.failed, result.total) == (4, 1, 5)
    assert result.status == PARTIAL_FAILURE
    assert result.results[2].success is False
    assert result.results[2].error == "File is empty"
    assert [r.index for r in result.results] == [0, 1, 2, 3, 4]
    assert (await service.search(SearchCriteria(tags=["batch"]))).total == 4


@pytest.mark.asyncio
async def test_bulk_upload_requires_files(service):
    with pytest.raises(ValidationError):
        await service.bulk_upload([], "alpha")


@pytest.mark.asyncio
async def test_bulk_delete_reports_each_id(service, backends):
    data = await service.upload_file(pdf(), "alpha")

    result = await service.bulk_delete([data["id"], "missing-id"])

    assert result.status == PARTIAL_FAILURE
    assert result.results[0].success
    assert result.results[1].error == "File not found"
    assert backends["alpha"].objects == {}


@pytest.mark.asyncio
async def test_bulk_delete_keeps_record_when_remote_delete_fails(service, backends):
    data = await service.upload_file(pdf(), "alpha")
    backends["alpha"].fail_deletes = True

    result = await service.bulk_delete([data["id"]])

    assert result.status == FAILURE
    assert "alpha" in result.results[0].error
    assert (await service.get_file(data["id"]))["providers"][0]["provider"] == "alpha"


@pytest.mark.asyncio
async def test_failed_refs_are_dropped_without_remote_call(service, backends):
    backends["gamma"].always_fail = True
    uploaded = await service.upload_multi(pdf(), ["alpha", "gamma"])
    backends["gamma"].fail_deletes = True

    result = await service.bulk_delete([uploaded.file_id])

    assert result.status == SUCCESS
    with pytest.raises(NotFoundError):
        await service.get_file(uploaded.file_id)


@pytest.mark.asyncio
async def test_remote_copy_already_gone_counts_as_deleted(service, backends):
    data = await service.upload_file(pdf(), "alpha")
    backends["alpha"].objects.clear()

    result = await service.bulk_delete([data["id"]])

    assert result.status == SUCCESS


@pytest.mark.asyncio
async def test_delete_multi_removes_selected_copies(service):
    uploaded = await service.upload_multi(pdf(), ["alpha", "beta"])

    result = await service.delete_multi(uploaded.file_id, ["alpha", "gamma"])

    assert result.status == PARTIAL_FAILURE
    outcomes = {r.provider: r for r in result.results}
    assert outcomes["alpha"].success
    assert outcomes["gamma"].error == "No copy stored on gamma"
    record = await service.get_file(uploaded.file_id)
    assert [r["provider"] for r in record["providers"]] == ["beta"]
    assert record["url"].startswith("https://beta.example/")


@pytest.mark.asyncio
async def test_delete_multi_unknown_file(service):
    with pytest.raises(NotFoundError):
        await service.delete_multi("nope", ["alpha"])


# -- retry ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_retry_succeeds_on_last_attempt(service, backends):
    backends["alpha"].fail_uploads = 2

    [result] = await service.retry_failed_uploads([RetryOperation(provider="alpha", upload=pdf())])

    assert result.success
    assert result.attempts == 3
    assert result.final_attempt is True
    assert service.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_retry_gives_up_after_two_retries(service, backends, metrics):
    backends["alpha"].always_fail = True

    [result] = await service.retry_failed_uploads([RetryOperation(provider="alpha", upload=pdf())])

    assert result.success is False
    assert result.attempts == 3
    assert backends["alpha"].upload_calls == 3
    assert service.delays == [2.0, 4.0]
    assert len(metrics.get_metrics(operation="retry-upload")) == 3


@pytest.mark.asyncio
async def test_retry_does_not_repeat_configuration_errors(service, backends):
    backends["alpha"].upload_error = ConfigurationError("Missing configuration for alpha")

    [result] = await service.retry_failed_uploads([RetryOperation(provider="alpha", upload=pdf())])

    assert result.success is False
    assert result.attempts == 1
    assert service.delays == []


@pytest.mark.asyncio
async def test_retry_updates_failed_catalog_ref(service, backends):
    backends["gamma"].always_fail = True
    uploaded = await service.upload_multi(pdf(), ["alpha", "gamma"], "docs")
    backends["gamma"].always_fail = False
    backends["gamma"].fail_uploads = 1

    [result] = await service.retry_failed_uploads(
        [RetryOperation(provider="gamma", upload=pdf(), folder_path="docs", file_id=uploaded.file_id)]
    )

    assert result.success and result.attempts == 2
    refs = {r["provider"]: r for r in (await service.get_file(uploaded.file_id))["providers"]}
    assert refs["gamma"]["status"] == "uploaded"
    assert refs["gamma"]["error"] is None
    assert refs["gamma"]["storage_name"] == result.storage_name
    assert await service.decrypt_credentials(uploaded.file_id, "gamma") == {"token": "gamma-token"}


@pytest.mark.asyncio
async def test_retry_catalog_failure_is_reported_per_item(service, backends, monkeypatch):
    from storage_gateway.db.repositories.file_repository import FileRepository

    backends["gamma"].always_fail = True
    uploaded = await service.upload_multi(pdf(), ["alpha", "gamma"], "docs")
    backends["gamma"].always_fail = False
    before = dict(backends["gamma"].objects)

    async def db_down(self, *args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(FileRepository, "upsert_ref", db_down)

    catalogued, standalone = await service.retry_failed_uploads(
        [
            RetryOperation(provider="gamma", upload=pdf(), folder_path="docs", file_id=uploaded.file_id),
            RetryOperation(provider="beta", upload=pdf("other.pdf")),
        ]
    )

    assert catalogued.success is False
    assert "db down" in catalogued.error
    assert backends["gamma"].objects == before
    assert standalone.success is True
    assert len(backends["beta"].objects) == 1


@pytest.mark.asyncio
async def test_retry_requires_operations(service):
    with pytest.raises(ValidationError):
        await service.retry_failed_uploads([])


# -- catalog --------------------------------------------------------------


@pytest.mark.asyncio
async def test_search_filters_and_paginates(service):
    await service.upload_file(pdf("report-2024.pdf"), "alpha", tags=["finance", "q1"])
    await service.upload_file(UploadedFile(b"hi", "notes.txt"), "alpha", tags=["finance"])
    await service.upload_file(UploadedFile(b"\x89PNG", "photo.png"), "beta", is_public=True)

    assert (await service.search(SearchCriteria(tags=["finance"]))).total == 2
    assert (await service.search(SearchCriteria(tags=["finance", "q1"]))).total == 1
    assert (await service.search(SearchCriteria(name="REPORT"))).total == 1
    assert (await service.search(SearchCriteria(provider="beta"))).total == 1
    assert (await service.search(SearchCriteria(is_public=True))).items[0]["original_name"] == "photo.png"
    assert (await service.search(SearchCriteria(mime_type="text/plain"))).total == 1

    page = await service.search(SearchCriteria(page=2, limit=2, sort_by="name", sort_order="asc"))
    assert page.total == 3 and page.total_pages == 2
    assert [i["original_name"] for i in page.items] == ["report-2024.pdf"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "criteria",
    [SearchCriteria(page=0), SearchCriteria(limit=101), SearchCriteria(sort_by="owner"), SearchCriteria(sort_order="up")],
)
async def test_search_rejects_bad_criteria(service, criteria):
    with pytest.raises(ValidationError):
        await service.search(criteria)


@pytest.mark.asyncio
async def test_update_metadata(service):
    data = await service.upload_file(pdf(), "alpha", tags=["old"])

    updated = await service.update_metadata(
        data["id"], MetadataPatch(description="Q1 report", tags=["new", "final"], is_public=True)
    )

    assert updated["description"] == "Q1 report"
    assert updated["tags"] == ["final", "new"]
    assert updated["is_public"] is True
    with pytest.raises(NotFoundError):
        await service.update_metadata("nope", MetadataPatch(description="x"))


@pytest.mark.asyncio
async def test_download_catalog_file_falls_back_and_counts(service, backends):
    uploaded = await service.upload_multi(pdf(), ["alpha", "beta"])
    backends["alpha"].fail_downloads = True

    content, record = await service.download_catalog_file(uploaded.file_id)

    assert content == b"%PDF-1.4 demo"
    assert record["download_count"] == 1
    assert record["last_accessed_at"] is not None


@pytest.mark.asyncio
async def test_decrypt_credentials_unknown_copy(service):
    data = await service.upload_file(pdf(), "alpha")
    assert await service.decrypt_credentials(data["id"], "alpha") == {"token": "alpha-token"}
    with pytest.raises(NotFoundError):
        await service.decrypt_credentials(data["id"], "beta")


@pytest.mark.asyncio
async def test_purge_expired_files(service):
    expired = await service.upload_file(pdf("old.pdf"), "alpha", expires_at=datetime.utcnow() - timedelta(days=1))
    await service.upload_file(pdf("new.pdf"), "alpha", expires_at=datetime.utcnow() + timedelta(days=1))
    await service.upload_file(pdf("forever.pdf"), "alpha")

    result = await service.purge_expired_files()

    assert (result.successful, result.total) == (1, 1)
    assert result.results[0].file_id == expired["id"]
    assert (await service.search(SearchCriteria())).total == 2


@pytest.mark.asyncio
async def test_tags_lifecycle(service):
    tag = await service.create_tag("finance", color="#00ff00")
    with pytest.raises(ValidationError):
        await service.create_tag("finance")
    assert [t["name"] for t in await service.list_tags()] == ["finance"]
    await service.delete_tag(tag["id"])
    with pytest.raises(NotFoundError):
        await service.delete_tag(tag["id"])


@pytest.mark.asyncio
async def test_catalog_operations_record_metrics_on_failure(service, metrics):
    with pytest.raises(NotFoundError):
        await service.get_file("nope")
    with pytest.raises(NotFoundError):
        await service.download_catalog_file("nope")
    with pytest.raises(NotFoundError):
        await service.decrypt_credentials("nope", "alpha")
    with pytest.raises(ValidationError):
        await service.create_tag("  ")
    with pytest.raises(ValidationError):
        await service.search(SearchCriteria(page=0))

    recorded = {m.operation: m for m in metrics.snapshot()}
    assert set(recorded) == {"get-file", "catalog-download", "decrypt-credentials", "create-tag", "search"}
    assert not any(m.success for m in recorded.values())


@pytest.mark.asyncio
async def test_missing_encryption_secret_is_recorded(service, backends, metrics):
    from conftest import make_resolver

    service.config_resolver = make_resolver(ENCRYPTION_SECRET=None)

    with pytest.raises(ConfigurationError):
        await service.upload_file(pdf(), "alpha")
    with pytest.raises(ConfigurationError):
        await service.upload_multi(pdf(), ["alpha", "beta"])

    assert backends["alpha"].upload_calls == 0
    assert [m.operation for m in metrics.snapshot()] == ["upload", "multi-upload"]
    assert not any(m.success for m in metrics.snapshot())


@pytest.mark.asyncio
async def test_credentials_are_encrypted_off_the_event_loop(service, monkeypatch):
    import threading

    from storage_gateway.core import storage_service
    from storage_gateway.security.encryption import encrypt_json

    threads = []

    def spying_encrypt(obj, secret):
        threads.append(threading.get_ident())
        return encrypt_json(obj, secret)

    monkeypatch.setattr(storage_service, "encrypt_json", spying_encrypt)

    await service.upload_multi(pdf(), ["alpha", "beta"])

    assert len(threads) == 2
    assert threading.get_ident() not in threads
