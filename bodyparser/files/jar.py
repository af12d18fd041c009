"""Ordered collection of the files submitted under one array style field."""

import asyncio
from collections.abc import Sequence
from typing import Any, Dict, Iterable, List, Optional

from bodyparser.files.entity import FileState, UploadedFile


class FileJar(Sequence):
    """
    Read-only sequence of UploadedFile for a ``field[]`` name.

    Adds bulk helpers on top of the per-file API: ``move_all`` moves every
    pending file concurrently, ``moved_all``/``moved_list``/``errors``
    summarize the outcome.
    """

    def __init__(self, field_name: str, files: Iterable[UploadedFile] = ()):
        self.field_name = field_name
        self._files: List[UploadedFile] = list(files)

    def __getitem__(self, index):
        return self._files[index]

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"<FileJar field={self.field_name!r} files={len(self._files)}>"

    async def move_all(self, destination_dir: str, overwrite: bool = True) -> None:
        """
        Move every PENDING file into ``destination_dir`` under its client name.

        Files that already reached a terminal state are left untouched. A file
        whose client name repeats an earlier one in the jar is rejected instead
        of racing the earlier file for the same destination.
        """
        pending = []
        seen = set()
        for file in self._files:
            if file.state is not FileState.PENDING:
                continue
            if file.client_name in seen:
                file.add_error(f"{file.client_name} duplicates another file name in {self.field_name}")
                continue
            seen.add(file.client_name)
            pending.append(file)

        await asyncio.gather(*(
            file.move(destination_dir, overwrite=overwrite) for file in pending
        ))

    def moved_all(self) -> bool:
        """True when the jar is non-empty and every file was moved."""
        return bool(self._files) and all(file.moved for file in self._files)

    def moved_list(self) -> List[UploadedFile]:
        return [file for file in self._files if file.moved]

    def errors(self) -> List[Dict[str, Any]]:
        """Error records of every file that failed, in submission order."""
        return [
            {
                'field_name': file.field_name,
                'client_name': file.client_name,
                'messages': file.errors,
            }
            for file in self._files
            if file.has_errors
        ]

    def first(self) -> Optional[UploadedFile]:
        return self._files[0] if self._files else None

    def to_list(self) -> List[Dict[str, Any]]:
        return [file.to_dict() for file in self._files]


__all__ = ['FileJar']
