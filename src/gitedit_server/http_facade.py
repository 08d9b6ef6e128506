"""HTTP facade for the gitedit engine.

Two surfaces share one app:

- ``POST /api/edition/<operation>``: JSON operations on remote repositories.
  Every response is ``{"success": ...}``; only a disallowed repository is
  answered with an HTTP error (403).
- ``/edition/<session>/...``: bearer-authenticated file access confined to a
  session sandbox.

Environment Variables:
- GITEDIT_HOST / GITEDIT_PORT: bind address (also ``--host``/``--port``)
- GITEDIT_SESSION_TOKEN: bearer token accepted for session files
- GITEDIT_ALLOWED_REPOSITORIES: comma-separated repository allow-list
"""

from __future__ import annotations

import argparse
import tempfile
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from gitedit.credentials import redact_url
from gitedit.errors import AuthorizationError, SandboxViolation, ValidationError
from gitedit.session_store import READ_CHUNK_SIZE, SessionFileStore

from .config import get_gitedit_config, get_service, get_version
from .edition import EditionService
from .observability import log_action, log_warning

FILE_METHODS = "GET, PUT, DELETE, OPTIONS"

# uploads larger than this spill from memory to a temporary file
UPLOAD_SPOOL_SIZE = 1024 * 1024


class EditionRequest(BaseModel):
    """Wire body shared by every edition operation; absent fields are ""."""

    model_config = ConfigDict(populate_by_name=True)

    repo: str = Field(default="", alias="gitUrl")
    path: str = Field(default="", alias="gitPath")
    username: str = Field(default="", alias="gitUsername")
    password: str = Field(default="", alias="gitPassword")
    hash: str = ""
    session: str = ""
    commit_msg: str = Field(default="", alias="commitMsg")
    type: str = ""
    pr_title: str = Field(default="", alias="prTitle")
    pr_body: str = Field(default="", alias="prBody")
    target: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return "" if v is None else v


def check_allowed(req: EditionRequest, service: EditionService) -> None:
    """Reject a disallowed repository before any work is done."""
    if req.repo and not service.is_allowed(req.repo):
        log_warning("Repository not allowed", repo=redact_url(req.repo))
        raise HTTPException(status_code=403, detail="Repository not allowed")


def session_files(
    session_id: str,
    authorization: Optional[str] = Header(default=None),
    service: EditionService = Depends(get_service),
) -> SessionFileStore:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer":
        token = ""
    try:
        store = service.open_session_files(session_id, token.strip())
    except AuthorizationError:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not store.exists():
        raise HTTPException(status_code=404, detail="Unknown session")
    return store


app = FastAPI(title="gitedit", version=get_version())
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_gitedit_config().server.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

api = APIRouter(prefix="/api/edition")
files = APIRouter(prefix="/edition/{session_id}")


@app.get("/health")
def health():
    return {"status": "ok", "service": "gitedit", "version": get_version()}


# ============================================================================
# Edition operations
# ============================================================================

@api.post("/checkoutEdition")
def checkout_edition(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.checkout_edition(req.repo, req.path, req.username, req.password)


@api.post("/prepareEdition")
def prepare_edition(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.prepare_edition(req.repo, req.path)


@api.post("/historyEdition")
def history_edition(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.history_edition(req.repo, req.path)


@api.post("/checkoutHashEdition")
def checkout_hash_edition(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.checkout_hash_edition(req.repo, req.hash)


@api.post("/getLastCommits")
def get_last_commits(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.last_commits(req.repo, req.path, req.username, req.password)


@api.post("/commitEdition")
def commit_edition(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.commit_edition(
        req.repo, req.path, req.session, req.commit_msg, req.username, req.password
    )


@api.post("/publishEdition")
def publish_edition(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.publish_edition(
        req.repo,
        req.path,
        req.type,
        req.username,
        req.password,
        req.pr_title,
        req.pr_body,
    )


@api.post("/diffEdition")
def diff_edition(req: EditionRequest, service: EditionService = Depends(get_service)):
    check_allowed(req, service)
    return service.diff_edition(
        req.repo, req.path, req.hash, req.target, req.username, req.password
    )


# ============================================================================
# Session files
# ============================================================================

@files.get("/list")
def list_files(store: SessionFileStore = Depends(session_files)):
    return JSONResponse(list(store.list()))


@files.get("/file/{file_path:path}")
def read_file(file_path: str, store: SessionFileStore = Depends(session_files)):
    try:
        chunks = store.read(file_path)
        if chunks is None:
            raise HTTPException(status_code=404, detail="Not found")
        return StreamingResponse(chunks, media_type=store.content_type(file_path))
    except SandboxViolation:
        raise HTTPException(status_code=403, detail="Forbidden")


@files.put("/file/{file_path:path}")
async def write_file(
    file_path: str,
    request: Request,
    start: int = 0,
    truncate: int = 0,
    store: SessionFileStore = Depends(session_files),
):
    if truncate == 1 and start != 0:
        raise HTTPException(status_code=400, detail="truncate requires start=0")
    with tempfile.SpooledTemporaryFile(max_size=UPLOAD_SPOOL_SIZE) as spool:
        async for chunk in request.stream():
            spool.write(chunk)
        spool.seek(0)
        chunks = iter(lambda: spool.read(READ_CHUNK_SIZE), b"")
        try:
            written = await run_in_threadpool(store.write, file_path, chunks, start, truncate == 1)
        except SandboxViolation:
            raise HTTPException(status_code=403, detail="Forbidden")
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except OSError as e:
            log_warning("Session write failed", path=file_path, error=str(e))
            raise HTTPException(status_code=409, detail="Write failed")
    return {"success": True, "written": written}


@files.delete("/file/{file_path:path}")
def delete_file(file_path: str, store: SessionFileStore = Depends(session_files)):
    try:
        deleted = store.delete(file_path)
    except SandboxViolation:
        raise HTTPException(status_code=403, detail="Forbidden")
    if not deleted:
        raise HTTPException(status_code=404, detail="Not found")
    return {"success": True}


@files.options("/file/{file_path:path}")
def probe_file(file_path: str, store: SessionFileStore = Depends(session_files)):
    return Response(status_code=200, headers={"Access-Control-Allow-Methods": FILE_METHODS})


app.include_router(api)
app.include_router(files)


def main(argv: Optional[list] = None) -> None:
    """Run the facade under uvicorn."""
    import uvicorn

    server = get_gitedit_config().server
    parser = argparse.ArgumentParser(prog="gitedit-server", description="gitedit HTTP facade")
    parser.add_argument("--host", default=server.host, help=f"Bind address (default: {server.host})")
    parser.add_argument("--port", type=int, default=server.port, help=f"Bind port (default: {server.port})")
    args = parser.parse_args(argv)

    log_action("server.start", host=args.host, port=args.port, version=get_version())
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
