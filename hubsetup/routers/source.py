"""Source archive endpoints: download a branch or file, extract, one-click setup.

Every endpoint answers with a server-sent-events stream of progress events.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from hubsetup.auth import require_api_key
from hubsetup.models.requests import (
    ExtractRequest,
    FileDownloadRequest,
    HubTarget,
    SourceRequest,
)
from hubsetup.routers.common import get_registry, stream_run
from hubsetup.services.pipeline import (
    DOWNLOAD_FLOW,
    EXTRACT_FLOW,
    FILE_DOWNLOAD_FLOW,
    SETUP_FLOW,
    Flow,
    PipelineRunner,
    SourceSpec,
)
from hubsetup.services.progress import StreamSink
from hubsetup.services.registry import SessionRegistry

router = APIRouter(prefix="/api", tags=["source"], dependencies=[Depends(require_api_key)])


def _target(req: HubTarget) -> HubTarget:
    return HubTarget(host=req.host, username=req.username, password=req.password)


def _start(
    registry: SessionRegistry,
    req: HubTarget,
    source: SourceSpec,
    flow: Flow,
) -> StreamingResponse:
    sink = StreamSink()
    runner = PipelineRunner(registry, sink, _target(req), source)
    return stream_run(sink, runner.run(flow))


@router.post("/github/download-branch")
async def download_branch(
    req: SourceRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Download a branch archive onto the hub."""
    source = SourceSpec.resolve(
        owner=req.owner, repo=req.repo, branch=req.branch, base_path=req.base_path,
    )
    return _start(registry, req, source, DOWNLOAD_FLOW)


@router.post("/github/download-file")
async def download_file(
    req: FileDownloadRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Download a single raw file from the repository onto the hub."""
    source = SourceSpec.resolve(
        owner=req.owner,
        repo=req.repo,
        branch=req.branch,
        base_path=req.base_path,
        file_path=req.file_path,
        output_path=req.output_path,
    )
    return _start(registry, req, source, FILE_DOWNLOAD_FLOW)


@router.post("/github/extract")
async def extract(
    req: ExtractRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> StreamingResponse:
    """Extract an archive that is already on the hub."""
    source = SourceSpec.resolve(archive_path=req.archive_path, extract_to=req.extract_to)
    return _start(registry, req, source, EXTRACT_FLOW)


@router.post("/setup/download-and-run")
async def download_and_run(
    req: SourceRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> StreamingResponse:
    """One-click setup: download, extract, install dependencies, run the setup script."""
    source = SourceSpec.resolve(
        owner=req.owner, repo=req.repo, branch=req.branch, base_path=req.base_path,
    )
    return _start(registry, req, source, SETUP_FLOW)
