"""Tests for the Dropbox adapter against a fake aiohttp session."""
import json

import pytest

from storage_gateway.errors import NotFoundError
from storage_gateway.providers.dropbox_provider import DropboxProvider, raw_link

from conftest import FakeResponse, make_resolver

SHARED_LINK = "https://www.dropbox.com/s/abc/a.txt?dl=0"


@pytest.fixture
def provider(resolver, session):
    return DropboxProvider(config_resolver=resolver, session=session)


def test_raw_link():
    assert raw_link(SHARED_LINK) == "https://www.dropbox.com/s/abc/a.txt?raw=1"
    assert raw_link("https://x/y?raw=1") == "https://x/y?raw=1"
    assert raw_link("https://x/y") == "https://x/y?raw=1"


@pytest.mark.asyncio
async def test_upload_creates_shared_link(provider, session):
    session.add(
        "POST",
        "/files/upload",
        FakeResponse(json_payload={"name": "a (1).txt", "path_lower": "/docs/a (1).txt", "path_display": "/docs/a (1).txt"}),
    )
    session.add("POST", "/sharing/create_shared_link_with_settings", FakeResponse(json_payload={"url": SHARED_LINK}))
    result = await provider.upload_file(b"data", "a.txt", "docs")
    assert result.url.endswith("?raw=1")
    # autorename picked another name
    assert result.storage_name == "a (1).txt"
    arg = json.loads(session.calls[0].kwargs["headers"]["Dropbox-API-Arg"])
    assert arg == {"path": "/docs/a.txt", "mode": "add", "autorename": True, "mute": False}
    assert session.calls[1].kwargs["json"] == {"path": "/docs/a (1).txt"}


@pytest.mark.asyncio
async def test_upload_reuses_existing_shared_link(provider, session):
    conflict = {
        "error_summary": "shared_link_already_exists/..",
        "error": {".tag": "shared_link_already_exists", "shared_link_already_exists": {"metadata": {"url": SHARED_LINK}}},
    }
    session.add("POST", "/files/upload", FakeResponse(json_payload={"name": "a.txt", "path_lower": "/a.txt"}))
    session.add(
        "POST", "/sharing/create_shared_link_with_settings", FakeResponse(status=409, text_payload=json.dumps(conflict))
    )
    result = await provider.upload_file(b"data", "a.txt")
    assert result.url == raw_link(SHARED_LINK)


@pytest.mark.asyncio
async def test_refresh_token_grant_used_when_configured(session):
    resolver = make_resolver(DROPBOX_APP_KEY="k", DROPBOX_APP_SECRET="s", DROPBOX_REFRESH_TOKEN="r")
    provider = DropboxProvider(config_resolver=resolver, session=session)
    session.add("POST", "/oauth2/token", FakeResponse(json_payload={"access_token": "fresh"}))
    session.add("POST", "/files/list_folder", FakeResponse(json_payload={"entries": [], "has_more": False}))
    await provider.list_files()
    assert session.calls[0].kwargs["data"]["grant_type"] == "refresh_token"
    assert session.calls[1].kwargs["headers"]["Authorization"] == "Bearer fresh"
    assert provider.get_encryptable_credentials()["refresh_token"] == "r"


@pytest.mark.asyncio
async def test_list_follows_cursor(provider, session):
    session.add(
        "POST",
        "/files/list_folder/continue",
        FakeResponse(json_payload={"entries": [{".tag": "file", "name": "b.pdf", "size": 9}], "has_more": False}),
    )
    session.add(
        "POST",
        "/files/list_folder",
        FakeResponse(
            json_payload={
                "entries": [{".tag": "folder", "name": "sub"}, {".tag": "file", "name": "a.txt", "size": 4}],
                "has_more": True,
                "cursor": "c1",
            }
        ),
    )
    items = await provider.list_files("docs")
    assert [(i.name, i.is_folder, i.path) for i in items] == [
        ("sub", True, "docs/sub"),
        ("a.txt", False, "docs/a.txt"),
        ("b.pdf", False, "docs/b.pdf"),
    ]
    assert items[2].content_type == "application/pdf"
    assert session.calls_to("POST", "/continue")[0].kwargs["json"] == {"cursor": "c1"}


@pytest.mark.asyncio
async def test_delete_missing_file_is_not_found(provider, session):
    session.add(
        "POST", "/files/delete_v2", FakeResponse(status=409, text_payload='{"error_summary": "path_lookup/not_found/"}')
    )
    with pytest.raises(NotFoundError):
        await provider.delete_file("gone.txt")


@pytest.mark.asyncio
async def test_create_folder_conflict_is_success(provider, session):
    session.add(
        "POST",
        "/files/create_folder_v2",
        FakeResponse(status=409, text_payload='{"error_summary": "path/conflict/folder/"}'),
    )
    await provider.create_folder("docs")


@pytest.mark.asyncio
async def test_download(provider, session):
    session.add("POST", "/files/download", FakeResponse(body=b"content"))
    assert await provider.download_file("a.txt", "docs") == b"content"
    assert json.loads(session.calls[0].kwargs["headers"]["Dropbox-API-Arg"]) == {"path": "/docs/a.txt"}
