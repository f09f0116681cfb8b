"""
Import / compile / load-back cycle against the remote store.

Every entry point takes an explicit Settings object; a ready AtelierClient may be
passed in, otherwise one is opened for the duration of the call.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from pydantic import BaseModel

from .atelier import AtelierClient
from .config import Settings
from .errors import CompileError, ConnectionInactiveError, RemoteStoreError
from .models import CompileResponse
from .normalize import modern_to_objectscript, to_content_lines
from .rules import NAMESPACE_PATTERNS, SOURCE_SUFFIXES

logger = logging.getLogger(__name__)

OthersCallback = Callable[[List[str]], None]
T = TypeVar("T")

_CLASS_HEADER = re.compile(r"^Class\s+(%?[\w.]+)", re.IGNORECASE | re.MULTILINE)
_ROUTINE_HEADER = re.compile(r"^ROUTINE\s+(%?[\w.]+)", re.IGNORECASE | re.MULTILINE)


class SourceFile(BaseModel):
    name: str
    content: str
    path: Optional[Path] = None


def document_name(path: Path, content: str) -> str:
    """Logical server-side name: taken from the Class/ROUTINE header when there is one."""
    suffix = path.suffix.lower()
    header = _CLASS_HEADER if suffix == ".cls" else _ROUTINE_HEADER
    match = header.search(content)
    if match:
        return f"{match.group(1)}{suffix}"
    return path.name


def load_source_file(path: Path) -> SourceFile:
    path = Path(path)
    content = path.read_text(encoding="utf-8")
    return SourceFile(name=document_name(path, content), content=content, path=path)


def discover_sources(folder: Path) -> List[Path]:
    """Source files under `folder`, any depth, suffix matched case-insensitively."""
    return sorted(
        p for p in Path(folder).rglob("*")
        if p.is_file() and p.suffix.lower() in SOURCE_SUFFIXES
    )


def _require_active(settings: Settings) -> None:
    if not settings.conn.active:
        raise ConnectionInactiveError("No Active Connection")


@asynccontextmanager
async def _client_for(settings: Settings, client: Optional[AtelierClient]) -> AsyncIterator[AtelierClient]:
    if client is not None:
        yield client
        return
    async with AtelierClient(settings) as owned:
        yield owned


async def import_file(client: AtelierClient, file: SourceFile) -> None:
    content = modern_to_objectscript(file.content, file.name)
    await client.put_doc(file.name, to_content_lines(content), ignore_conflict=True)


async def compile_documents(client: AtelierClient, files: Sequence[SourceFile], flags: str) -> str:
    """Compile `files` together; returns the success message or raises CompileError."""
    names = [f.name for f in files]
    info = f"{names[0]}: " if len(names) == 1 else ""

    errors = await client.compile(names, flags)
    if errors:
        logger.error("%sCompile error (%d reported)", info, len(errors))
        raise CompileError(f"{info}Compile error", names, errors)

    message = f"{info}Compile succeeded"
    logger.info(message)
    return message


async def _gather_all(*aws: Awaitable[T]) -> List[T]:
    """Await everything, then raise the first failure; nothing is left running."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


async def load_changes(
    client: AtelierClient,
    files: Sequence[SourceFile],
    on_others: Optional[OthersCallback] = None,
) -> Dict[str, List[str]]:
    """
    Pull compiled documents back and collect what the compiler generated from them.

    Every document is fetched before any local file is written, so a failed
    fetch leaves the workspace untouched. Fetches and index lookups run
    concurrently.
    """
    fetched = await _gather_all(*(client.get_doc(f.name) for f in files))
    for file, lines in zip(files, fetched):
        if file.path is not None:
            file.path.write_text("\n".join(lines), encoding="utf-8")

    results = await _gather_all(*(client.index([f.name]) for f in files))
    if on_others is not None:
        for others in results:
            on_others(others)
    return {f.name: others for f, others in zip(files, results)}


async def import_and_compile(
    settings: Settings,
    file: SourceFile,
    flags: Optional[str] = None,
    client: Optional[AtelierClient] = None,
    on_others: Optional[OthersCallback] = None,
) -> CompileResponse:
    _require_active(settings)
    flags = flags or settings.compile_flags

    async with _client_for(settings, client) as api:
        try:
            await import_file(api, file)
        except RemoteStoreError:
            # compile runs against whatever the server already holds
            logger.warning("import of %s failed, compiling anyway", file.name, exc_info=True)
        message = await compile_documents(api, [file], flags)
        others = await load_changes(api, [file], on_others)
        return CompileResponse(documents=[file.name], message=message, others=others)


async def namespace_compile(
    settings: Settings,
    flags: Optional[str] = None,
    files: Sequence[SourceFile] = (),
    client: Optional[AtelierClient] = None,
    cancelled: bool = False,
    on_others: Optional[OthersCallback] = None,
) -> Optional[CompileResponse]:
    """Compile every class and routine in the namespace, then reload `files`."""
    _require_active(settings)
    if cancelled:
        return None
    flags = flags or settings.compile_flags

    async with _client_for(settings, client) as api:
        errors = await api.compile(NAMESPACE_PATTERNS, flags)
        if errors:
            logger.error("Compiling Namespace: %s Error", api.namespace)
            raise CompileError(f"Compiling Namespace: {api.namespace} Error", NAMESPACE_PATTERNS, errors)
        message = f"Compiling Namespace: {api.namespace} Success"
        logger.info(message)
        others = await load_changes(api, files, on_others)
        return CompileResponse(documents=NAMESPACE_PATTERNS, message=message, others=others)


async def import_files(
    settings: Settings,
    paths: Sequence[Path],
    flags: Optional[str] = None,
    client: Optional[AtelierClient] = None,
    on_others: Optional[OthersCallback] = None,
) -> CompileResponse:
    _require_active(settings)
    flags = flags or settings.compile_flags
    files = [load_source_file(p) for p in paths]
    if not files:
        return CompileResponse(documents=[], message="Nothing to import")

    async with _client_for(settings, client) as api:
        async def _import(file: SourceFile) -> None:
            await import_file(api, file)
            logger.info("Imported file: %s", file.path)

        await _gather_all(*(_import(f) for f in files))
        message = await compile_documents(api, files, flags)
        others = await load_changes(api, files, on_others)
        return CompileResponse(documents=[f.name for f in files], message=message, others=others)


async def import_folder(
    settings: Settings,
    path: Path,
    flags: Optional[str] = None,
    client: Optional[AtelierClient] = None,
    on_others: Optional[OthersCallback] = None,
) -> CompileResponse:
    path = Path(path)
    paths = [path] if path.is_file() else discover_sources(path)
    return await import_files(settings, paths, flags, client, on_others)
