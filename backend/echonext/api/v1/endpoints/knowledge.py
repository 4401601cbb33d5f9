"""Knowledge base management endpoints."""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Literal, Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from echonext.api.deps import KnowledgeStoreDep, SettingsDep
from echonext.core.config import BACKEND_DIR
from echonext.core.exceptions import KnowledgeBaseNotFoundError, KnowledgeBaseParseError
from echonext.knowledge.models import KnowledgeBaseInfo, KnowledgeBaseStatus
from echonext.knowledge.store import list_knowledge_bases, list_source_folders

router = APIRouter()
logger = logging.getLogger(__name__)

BUILDER_MODULE = "echonext.knowledge.builder"


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class KnowledgeBaseListResponse(BaseModel):
    models: list[KnowledgeBaseInfo]


class LoadRequest(BaseModel):
    """Request to load a knowledge base file."""

    filename: Optional[str] = None


class LoadResponse(BaseModel):
    success: bool = True
    model: KnowledgeBaseStatus


class BuildRequest(BaseModel):
    """Request to build a knowledge base from a source folder."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    knowledge_folder: str = Field(..., min_length=1)
    model_name: str = Field(..., min_length=1)
    language: Literal["ja", "en"]
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)


class SourceFolder(BaseModel):
    name: str
    path: str


class SourceFolderListResponse(BaseModel):
    folders: list[SourceFolder]


def _is_plain_filename(name: str) -> bool:
    return bool(name) and name not in (".", "..") and Path(name).name == name and "\\" not in name


# -------------------------------------------------------------------------
# Endpoints
# -------------------------------------------------------------------------


@router.get("/rag-knowledge", response_model=KnowledgeBaseListResponse, response_model_by_alias=True)
async def list_models(settings: SettingsDep) -> KnowledgeBaseListResponse:
    """List knowledge base files available for loading."""
    models = await asyncio.to_thread(list_knowledge_bases, settings.knowledge_base_dir)
    return KnowledgeBaseListResponse(models=models)


@router.post("/rag-knowledge/load", response_model=LoadResponse, response_model_by_alias=True)
async def load_model(
    request: LoadRequest,
    store: KnowledgeStoreDep,
    settings: SettingsDep,
) -> LoadResponse:
    """Load a knowledge base and make it active.

    Raises:
        HTTPException: 400 for a missing or unsafe filename, 404 if the
            file does not exist, 422 if it cannot be parsed.
    """
    filename = (request.filename or "").strip()
    if not filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )
    if not _is_plain_filename(filename):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid filename",
        )

    try:
        await store.load(settings.knowledge_base_dir / filename)
    except KnowledgeBaseNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except KnowledgeBaseParseError as e:
        logger.error(f"Failed to load knowledge base {filename}: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    return LoadResponse(model=store.status())


@router.get("/rag-knowledge/current", response_model=KnowledgeBaseStatus, response_model_by_alias=True)
async def current_model(store: KnowledgeStoreDep) -> KnowledgeBaseStatus:
    """Describe the active knowledge base."""
    return store.status()


@router.post("/rag-knowledge/unload")
async def unload_model(store: KnowledgeStoreDep) -> dict[str, bool]:
    """Unload the active knowledge base."""
    await store.unload()
    return {"success": True}


@router.get("/knowledge-folders", response_model=SourceFolderListResponse)
async def list_folders(settings: SettingsDep) -> SourceFolderListResponse:
    """List source document folders that can be built into knowledge bases."""
    folders = await asyncio.to_thread(list_source_folders, settings.knowledge_data_dir)
    return SourceFolderListResponse(folders=[SourceFolder(**f) for f in folders])


@router.post("/rag-knowledge/build", response_model=None)
async def build_model(request: BuildRequest) -> dict[str, Any] | JSONResponse:
    """Build a knowledge base by running the builder as a subprocess.

    Returns the builder output on success, or a 500 response carrying
    the builder's stderr and exit code.
    """
    if not _is_plain_filename(request.model_name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid model name",
        )

    logger.info(
        f"Building knowledge base: folder={request.knowledge_folder} "
        f"name={request.model_name} language={request.language} "
        f"chunk_size={request.chunk_size} overlap={request.chunk_overlap}"
    )

    exit_code, stdout, stderr = await run_builder(
        request.knowledge_folder,
        request.model_name,
        request.language,
        request.chunk_size,
        request.chunk_overlap,
    )

    if exit_code == 0:
        logger.info(f"Knowledge base build finished: {request.model_name}")
        return {
            "success": True,
            "message": "Knowledge base built successfully",
            "output": stdout,
        }

    logger.error(f"Knowledge base build failed with exit code {exit_code}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Build failed",
            "message": stderr or stdout,
            "exitCode": exit_code,
        },
    )


async def run_builder(
    knowledge_folder: str,
    model_name: str,
    language: str,
    chunk_size: int,
    chunk_overlap: int,
) -> tuple[int, str, str]:
    """Run the builder CLI and collect its exit code and output."""
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (str(BACKEND_DIR), env.get("PYTHONPATH", "")) if p
    )

    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        BUILDER_MODULE,
        knowledge_folder,
        model_name,
        language,
        str(chunk_size),
        str(chunk_overlap),
        cwd=str(BACKEND_DIR),
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return (
        process.returncode if process.returncode is not None else -1,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
