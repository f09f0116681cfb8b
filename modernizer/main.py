import logging
from typing import AsyncIterator

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile

from .atelier import AtelierClient
from .config import Settings, get_settings
from .errors import CompileError, ConnectionInactiveError, ModernizerError, RemoteStoreError
from .models import (
    CompileRequest,
    CompileResponse,
    HealthResponse,
    NamespaceCompileRequest,
    NormalizeRequest,
    NormalizeResponse,
)
from .normalize import decode_source, normalize_document
from .pipeline import SourceFile, import_and_compile, namespace_compile
from .rules import SOURCE_SUFFIXES

logger = logging.getLogger(__name__)

app = FastAPI(
    title="objectscript-modernizer",
    description="Modern dialect normalization and remote import/compile for ObjectScript sources",
    version="0.1.0",
)


async def get_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[AtelierClient]:
    async with AtelierClient(settings) as client:
        yield client


def _http_error(error: ModernizerError) -> HTTPException:
    if isinstance(error, ConnectionInactiveError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, CompileError):
        return HTTPException(status_code=422, detail={"message": str(error), "errors": error.errors})
    if isinstance(error, RemoteStoreError):
        return HTTPException(status_code=502, detail={"message": str(error), "errors": error.errors})
    return HTTPException(status_code=500, detail=str(error))


@app.get("/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.post("/normalize", response_model=NormalizeResponse)
def normalize_source(request: NormalizeRequest):
    return normalize_document(request.name, request.content)


@app.post("/normalize/file", response_model=NormalizeResponse)
async def normalize_file(file: UploadFile = File(...)):
    if not file.filename.lower().endswith(SOURCE_SUFFIXES):
        raise HTTPException(status_code=422, detail="Only .cls, .mac, .inc and .int files are supported")

    raw = await file.read()
    return normalize_document(file.filename, decode_source(raw))


@app.post("/compile", response_model=CompileResponse)
async def compile_source(
    request: CompileRequest,
    settings: Settings = Depends(get_settings),
    client: AtelierClient = Depends(get_client),
):
    source = SourceFile(name=request.name, content=request.content)
    try:
        return await import_and_compile(settings, source, request.flags, client=client)
    except ModernizerError as e:
        logger.error("compile of %s failed: %s", request.name, e)
        raise _http_error(e) from e


@app.post("/compile/namespace", response_model=CompileResponse)
async def compile_namespace(
    request: NamespaceCompileRequest,
    settings: Settings = Depends(get_settings),
    client: AtelierClient = Depends(get_client),
):
    try:
        return await namespace_compile(settings, request.flags, client=client)
    except ModernizerError as e:
        logger.error("namespace compile failed: %s", e)
        raise _http_error(e) from e
