import asyncio
import os
import uuid
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple

import uvicorn
from fastapi import FastAPI, BackgroundTasks, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, field_validator

from deedscraper.adapters import get_adapter, list_adapters
from deedscraper.config import RetrievalSettings
from deedscraper.errors import ConfigurationError
from deedscraper.main import DeedRetrievalGraph
from deedscraper.scrapers.resolver import HttpIdentifierResolver
from deedscraper.state import KnownIdentifiers, RetrievalRequest

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("deed-retrieval-api")

MAX_ADDRESSES = int(os.getenv("MAX_ADDRESSES", "10"))  # Maximum number of addresses per job

settings = RetrievalSettings.from_env()

# Initialize FastAPI app
app = FastAPI(
    title="Prior Deed Retrieval API",
    description="API for downloading the most recent recorded deed of a property",
    version="1.0.0",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models
class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class KnownIdentifiersModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parcel_id: Optional[str] = Field(None, alias="parcelId")
    instrument_number: Optional[str] = Field(None, alias="instrumentNumber")
    book_number: Optional[str] = Field(None, alias="bookNumber")
    page_number: Optional[str] = Field(None, alias="pageNumber")


class CountyModel(BaseModel):
    county: str = Field(..., min_length=1)
    state: str = Field(..., min_length=2, max_length=2)


class DeedRequest(CountyModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str
    known_identifiers: Optional[KnownIdentifiersModel] = Field(None, alias="knownIdentifiers")

    @field_validator("address")
    @classmethod
    def validate_address(cls, address):
        if not address.strip():
            raise ValueError("Address must be a non-empty string")
        return address.strip()

    def to_request(self) -> RetrievalRequest:
        known = self.known_identifiers.model_dump() if self.known_identifiers else None
        return RetrievalRequest(address=self.address, known_identifiers=KnownIdentifiers.from_dict(known))


class AddressRequest(CountyModel):
    addresses: List[str] = Field(..., min_length=1, max_length=MAX_ADDRESSES)

    @field_validator("addresses")
    @classmethod
    def validate_addresses(cls, addresses):
        if not all(addr.strip() for addr in addresses):
            raise ValueError("All addresses must be non-empty strings")
        return [addr.strip() for addr in addresses]


class AddressResult(BaseModel):
    address: str
    success: bool = False
    error: Optional[Dict[str, Any]] = None
    document: Optional[Dict[str, Any]] = None
    duration_ms: int = 0
    completed: bool = False


class JobResponse(BaseModel):
    job_id: str
    status: JobStatus
    county: str
    state: str
    created_at: datetime
    updated_at: datetime
    total_addresses: int
    completed_addresses: int
    results: List[AddressResult] = []


# In-memory job storage
jobs: Dict[str, JobResponse] = {}

# Compiled graphs, one per county
graphs: Dict[Tuple[str, str], DeedRetrievalGraph] = {}

# Every retrieval, synchronous or queued, holds one browser session slot
session_pool = asyncio.Semaphore(settings.max_concurrent_sessions)


def get_graph(county: str, state: str) -> DeedRetrievalGraph:
    """Return the compiled graph for a county, building it on first use."""
    adapter = get_adapter(county, state, settings=settings)
    key = (adapter.county, adapter.state)
    if key not in graphs:
        resolver = None
        if settings.resolver_endpoint:
            resolver = HttpIdentifierResolver(
                settings.resolver_endpoint, settings.resolver_token, settings.resolver_timeout_s
            )
        graph = DeedRetrievalGraph(adapter, settings=settings, resolver=resolver)
        graph.compile()
        graphs[key] = graph
    return graphs[key]


async def retrieve(graph: DeedRetrievalGraph, request: RetrievalRequest):
    async with session_pool:
        return await graph.run(request)


async def process_address(job_id: str, graph: DeedRetrievalGraph, address: str, index: int):
    """Retrieve a single address and update the job status."""
    job = jobs[job_id]
    job.status = JobStatus.PROCESSING
    job.updated_at = datetime.now()

    logger.info(f"Processing address: {address}")
    result = await retrieve(graph, RetrievalRequest(address=address))

    job.results[index].success = result.success
    job.results[index].error = result.error.to_dict() if result.error else None
    # Jobs live in process memory; keep the document metadata, not its bytes
    job.results[index].document = result.document.to_dict(include_bytes=False) if result.document else None
    job.results[index].duration_ms = result.duration_ms
    job.results[index].completed = True
    job.completed_addresses += 1
    job.updated_at = datetime.now()
    logger.info(f"Completed processing address: {address}")


async def process_addresses(job_id: str, graph: DeedRetrievalGraph, addresses: List[str]):
    """Retrieve every address of a job, bounded by the session pool."""
    job = jobs[job_id]
    try:
        await asyncio.gather(
            *(process_address(job_id, graph, address, i) for i, address in enumerate(addresses))
        )
        job.status = JobStatus.COMPLETED
    except Exception as e:
        logger.error(f"Error in background processing: {e}")
        job.status = JobStatus.FAILED
    job.updated_at = datetime.now()


def _graph_or_400(county: str, state: str) -> DeedRetrievalGraph:
    try:
        return get_graph(county, state)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/api/deed/download")
async def download_deed(request: DeedRequest) -> Dict[str, Any]:
    """Retrieve one deed and return it base64-encoded with the step audit trail."""
    graph = _graph_or_400(request.county, request.state)
    result = await retrieve(graph, request.to_request())
    return result.to_dict()


@app.post("/api/jobs", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_job(request: AddressRequest, background_tasks: BackgroundTasks) -> JobResponse:
    """Queue deed retrieval for a list of addresses in one county."""
    graph = _graph_or_400(request.county, request.state)
    job_id = str(uuid.uuid4())
    created_at = datetime.now()

    job = JobResponse(
        job_id=job_id,
        status=JobStatus.PENDING,
        county=graph.adapter.county,
        state=graph.adapter.state,
        created_at=created_at,
        updated_at=created_at,
        total_addresses=len(request.addresses),
        completed_addresses=0,
        results=[AddressResult(address=addr) for addr in request.addresses],
    )

    # Store job in memory
    jobs[job_id] = job

    # Start background processing
    background_tasks.add_task(process_addresses, job_id, graph, request.addresses)

    return job


@app.get("/api/jobs/{job_id}", response_model=JobResponse)
async def get_job_status(job_id: str) -> JobResponse:
    """Get the status of a deed retrieval job."""
    job = jobs.get(job_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Job with ID {job_id} not found"
        )
    return job


@app.get("/api/counties")
async def counties():
    """Counties with a site adapter."""
    return {"counties": list_adapters()}


@app.get("/api/health")
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "counties": len(list_adapters()),
        "activeJobs": sum(1 for job in jobs.values() if job.status == JobStatus.PROCESSING),
    }


@app.on_event("startup")
async def startup_event():
    logger.info("Starting Prior Deed Retrieval API")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Prior Deed Retrieval API")


if __name__ == "__main__":
    uvicorn.run("application:app", host="0.0.0.0", port=8000, reload=True)
