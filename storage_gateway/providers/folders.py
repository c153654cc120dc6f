# storage_gateway/providers/folders.py
"""
Folder emulation for flat-namespace object stores (GCS, Backblaze B2).

Objects are keyed by full path; a listing of a folder shows the objects
directly below it plus one synthesized entry per immediate child folder.
Folder marker objects (`<folder>/` on GCS, `.b2_folder_placeholder` on B2)
keep empty folders visible and are never listed themselves.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from storage_gateway.providers.base import FileListItem, folder_item, guess_content_type


@dataclass
class ObjectEntry:
    """A raw object returned by a flat listing."""
    key: str
    size: Union[int, str, None] = None
    content_type: Optional[str] = None
    created: Optional[str] = None
    updated: Optional[str] = None
    original_name: Optional[str] = None


def group_listing(
    entries: Iterable[ObjectEntry],
    folder: str = "",
    hidden_names: Iterable[str] = (),
) -> List[FileListItem]:
    """Turn a prefix listing into the direct children of `folder`."""
    prefix = f"{folder}/" if folder else ""
    hidden = set(hidden_names)
    seen_folders = set()
    items: List[FileListItem] = []

    for entry in sorted(entries, key=lambda e: e.key):
        if not entry.key.startswith(prefix):
            continue
        relative = entry.key[len(prefix):]
        if not relative:
            # the folder's own marker
            continue
        if "/" in relative:
            child = relative.split("/", 1)[0]
            if child and child not in seen_folders:
                seen_folders.add(child)
                items.append(folder_item(child, f"{prefix}{child}"))
            continue
        if relative in hidden:
            continue
        items.append(
            FileListItem(
                name=relative,
                size=entry.size,
                content_type=entry.content_type or guess_content_type(relative),
                path=entry.key,
                is_folder=False,
                created=entry.created,
                updated=entry.updated,
                original_name=entry.original_name or relative,
            )
        )
    return items
