# ========================
# api_server.py
# ========================

"""
FastAPI Server for the Tabular Transformation Pipeline

Provides REST API endpoints for validating configurations, uploading CSV
files with a pipeline configuration and following the resulting jobs.
Jobs run on a bounded thread pool and live in memory only.
"""

import asyncio
import dataclasses
import json
import logging
import shutil
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from concurrent.futures import ThreadPoolExecutor

from fastapi import FastAPI, File, Form, UploadFile, HTTPException, Body, Query
from fastapi.responses import FileResponse
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from src.pipeline.cancellation import CancelToken
from src.pipeline.errors import ConfigurationError, OperationCancelledError
from src.pipeline.ingestion import supported_source_types
from src.pipeline.models import PipelineConfig
from src.pipeline.orchestrator import DataPipeline, PipelineResult
from src.pipeline.processor import TableProcessor
from src.pipeline.storage import supported_output_formats
from src.utils.config import Config
from src.utils.logging_setup import setup_logging
from src.utils.performance_monitor import SystemResourceMonitor

# Configuration
config = Config()

# Setup logging
setup_logging(log_level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Tabular Transformation Pipeline API",
    description="Validate pipeline configurations and run them over uploaded CSV files",
    version="1.0.0"
)

# Add CORS middleware to allow frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

UPLOAD_DIR = Path(config.UPLOAD_DIR)
OUTPUT_DIR = Path(config.DEFAULT_OUTPUT_DIR)
config.ensure_directories()

# Constants
JOB_NOT_FOUND_MSG = "Job not found"
JOB_NOT_COMPLETED_MSG = "Job not completed yet"
ACTIVE_STATUSES = ('queued', 'processing')

# Global state for tracking jobs
job_status: Dict[str, Dict[str, Any]] = {}
job_results: Dict[str, PipelineResult] = {}
job_tokens: Dict[str, CancelToken] = {}
job_lock = threading.Lock()
executor = ThreadPoolExecutor(max_workers=config.MAX_CONCURRENT_JOBS)


def _now() -> str:
    return datetime.now().isoformat()


def _update_job(job_id: str, **fields) -> None:
    with job_lock:
        if job_id in job_status:
            job_status[job_id].update(fields)


def _config_error_detail(error: ConfigurationError) -> Dict[str, str]:
    return {'field': error.field, 'message': str(error)}


class PipelineJobManager:
    """Manages background pipeline jobs."""

    @staticmethod
    def run_pipeline(job_id: str, pipeline_config: PipelineConfig, output_dir: str) -> None:
        """Run pipeline in a worker thread and record the outcome on the job."""
        try:
            with job_lock:
                token = job_tokens.get(job_id)
            logger.info(f"Starting pipeline job {job_id}")
            _update_job(job_id, status='processing', started_at=_now())

            pipeline = DataPipeline(pipeline_config, settings=config)
            write_output = pipeline_config.output_format != 'console'
            destination = ""
            if write_output:
                destination = str(Path(output_dir) / f"result.{pipeline_config.output_format}")

            result = pipeline.run(destination=destination, cancel=token, write_output=write_output)
            report = result.to_dict()
        except Exception as e:
            logger.error(f"Pipeline job {job_id} failed: {e}")
            error = {'type': type(e).__name__, 'message': str(e), 'step': None}
            _update_job(job_id, status='failed', failed_at=_now(), error=error)
            return

        with job_lock:
            job_results[job_id] = result
        if result.ok:
            _update_job(job_id, status='completed', completed_at=_now(), results=report)
            logger.info(f"Pipeline job {job_id} completed successfully")
        elif isinstance(result.error, OperationCancelledError):
            _update_job(job_id, status='cancelled', cancelled_at=_now(), error=report['error'])
            logger.info(f"Pipeline job {job_id} cancelled")
        else:
            _update_job(job_id, status='failed', failed_at=_now(), error=report['error'])
            logger.error(f"Pipeline job {job_id} failed: {result.error}")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Tabular Transformation Pipeline API",
        "version": "1.0.0",
        "endpoints": {
            "capabilities": "/capabilities - Supported sources, operators and formats",
            "validate_config": "/validate-config - Validate a pipeline configuration",
            "validate_expression": "/validate-expression - Validate a filter expression",
            "upload": "/upload - Upload CSV file with a pipeline configuration",
            "status": "/status/{job_id} - Check job status",
            "preview": "/preview/{job_id} - First rows of a completed job",
            "download": "/download/{job_id} - Download the job result",
            "jobs": "/jobs - List all jobs",
            "health": "/health - Health check",
            "api_docs": "/docs - API documentation"
        },
        "api_docs_url": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    with job_lock:
        active = len([j for j in job_status.values() if j['status'] in ACTIVE_STATUSES])
    return {
        "status": "healthy",
        "timestamp": _now(),
        "active_jobs": active,
        "resources": SystemResourceMonitor.check_resource_availability(),
        "system": SystemResourceMonitor.get_system_stats(),
    }


@app.get("/capabilities")
async def capabilities():
    """Supported source types, operators, strategies, methods and output formats."""
    return {
        "source_types": supported_source_types(),
        "filter_operators": TableProcessor.get_supported_operators(),
        "merge_strategies": TableProcessor.get_supported_merge_strategies(),
        "aggregate_methods": TableProcessor.get_supported_aggregations(),
        "output_formats": supported_output_formats(),
    }


@app.post("/validate-config")
async def validate_config_endpoint(payload: Dict[str, Any] = Body(...)):
    """
    Validate a pipeline configuration.

    Returns:
        dict: The normalised configuration with defaults filled in
    """
    try:
        validated = PipelineConfig.from_dict(payload).validate()
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=_config_error_detail(e))
    return {"valid": True, "config": validated.to_dict()}


@app.post("/validate-expression")
async def validate_expression_endpoint(payload: Dict[str, Any] = Body(...)):
    """
    Validate a filter expression such as ``age gte 30 and city eq Tokyo``.

    Body: ``{"expression": str, "columns": [str, ...]}``
    """
    expression = payload.get('expression', '')
    columns = payload.get('columns', [])
    if not isinstance(expression, str) or not isinstance(columns, list):
        raise HTTPException(status_code=400, detail="expression must be a string and columns a list")
    try:
        clauses = TableProcessor().validate_expression(expression, columns)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=_config_error_detail(e))
    return {"valid": True, "filters": [clause.to_dict() for clause in clauses]}


@app.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    pipeline_config: str = Form(..., description="Pipeline configuration JSON"),
    timeout: Optional[float] = Query(None, description="Cancel the job after this many seconds", gt=0)
):
    """
    Upload a CSV file and queue a pipeline run over it.

    The configuration's ``type`` and ``source`` are replaced by the uploaded
    file.

    Returns:
        dict: Job ID and status information
    """
    if not file.filename or not file.filename.lower().endswith('.csv'):
        raise HTTPException(status_code=400, detail="Only CSV files are supported")

    job_id = str(uuid.uuid4())
    file_path = UPLOAD_DIR / f"{job_id}_{Path(file.filename).name}"
    try:
        parsed = PipelineConfig.from_dict(json.loads(pipeline_config))
        parsed = dataclasses.replace(parsed, type='csv', source=str(file_path)).validate()
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"pipeline_config is not valid JSON: {e}")
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=_config_error_detail(e))

    content = await file.read()

    def write_file():
        UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        with open(file_path, "wb") as buffer:
            buffer.write(content)

    # Execute file write in thread pool to avoid blocking
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, write_file)

    output_dir = OUTPUT_DIR / job_id
    output_dir.mkdir(parents=True, exist_ok=True)

    with job_lock:
        job_status[job_id] = {
            'job_id': job_id,
            'filename': file.filename,
            'config_name': parsed.name,
            'status': 'queued',
            'created_at': _now(),
            'input_file': str(file_path),
            'output_dir': str(output_dir),
            'output_format': parsed.output_format,
            'file_size': len(content)
        }
        job_tokens[job_id] = CancelToken(
            timeout=timeout if timeout is not None else config.timeout,
            poll_interval=config.CANCEL_POLL_ROWS,
        )

    executor.submit(PipelineJobManager.run_pipeline, job_id, parsed, str(output_dir))
    logger.info(f"Queued pipeline job {job_id} for file {file.filename}")

    return {
        "job_id": job_id,
        "filename": file.filename,
        "config_name": parsed.name,
        "status": "queued",
        "message": "File uploaded successfully. Pipeline processing queued.",
        "estimated_processing_info": "Use /status/{job_id} to check progress"
    }


def _get_job(job_id: str) -> Dict[str, Any]:
    with job_lock:
        if job_id not in job_status:
            raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)
        return dict(job_status[job_id])


def _get_completed_result(job_id: str) -> PipelineResult:
    job = _get_job(job_id)
    if job['status'] != 'completed':
        raise HTTPException(status_code=400, detail=JOB_NOT_COMPLETED_MSG)
    with job_lock:
        return job_results[job_id]


@app.get("/status/{job_id}")
async def get_job_status(job_id: str):
    """
    Get the status of a pipeline job.

    Args:
        job_id: Unique job identifier

    Returns:
        dict: Job status and, once finished, the processing report
    """
    job = _get_job(job_id)
    if job['status'] == 'completed' and 'results' in job:
        results = job['results']
        metadata = results['report']['metadata']
        job['summary'] = {
            'source_rows': metadata['sourceTotalRows'],
            'filtered_rows': metadata['filterTotalRows'],
            'result_rows': results['rows'],
            'result_columns': results['columns'],
        }
    return job


@app.get("/jobs")
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status: queued, processing, completed, failed, cancelled"),
    limit: int = Query(50, description="Maximum number of jobs to return", ge=1, le=100)
):
    """
    List all pipeline jobs with optional filtering.

    Args:
        status: Filter jobs by status
        limit: Maximum number of jobs to return

    Returns:
        dict: List of jobs
    """
    with job_lock:
        jobs = [dict(job) for job in job_status.values()]
        total = len(job_status)

    if status:
        jobs = [job for job in jobs if job['status'] == status]

    # Sort by creation time (newest first)
    jobs.sort(key=lambda x: x['created_at'], reverse=True)
    jobs = jobs[:limit]

    return {
        "jobs": jobs,
        "total_count": total,
        "filtered_count": len(jobs)
    }


@app.get("/preview/{job_id}")
async def preview_results(job_id: str, rows: int = Query(10, description="Number of rows", ge=1, le=1000)):
    """Return the first rows of a completed job's result table."""
    result = _get_completed_result(job_id)
    return {
        "job_id": job_id,
        "columns": result.table.column_names,
        "rows": result.table.head(rows).to_records(),
        "total_rows": result.table.row_count,
    }


@app.get("/download/{job_id}")
async def download_results(job_id: str):
    """
    Download the result file of a completed job.

    Args:
        job_id: Unique job identifier

    Returns:
        FileResponse: The result file
    """
    result = _get_completed_result(job_id)
    if not result.destination:
        raise HTTPException(status_code=404, detail="Job produced no output file")

    file_path = Path(result.destination)
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found on disk")

    return FileResponse(
        path=file_path,
        filename=f"{job_id}_{file_path.name}",
        media_type='application/octet-stream'
    )


@app.delete("/jobs/{job_id}")
async def delete_job(job_id: str):
    """
    Cancel an active job, or delete a finished job and its files.

    Args:
        job_id: Unique job identifier

    Returns:
        dict: Cancellation or deletion status
    """
    job = _get_job(job_id)

    if job['status'] in ACTIVE_STATUSES:
        job_tokens[job_id].cancel("cancelled by request")
        logger.info(f"Cancellation requested for job {job_id}")
        return {"message": f"Cancellation requested for job {job_id}", "status": "cancelling"}

    try:
        input_file = Path(job['input_file'])
        if input_file.exists():
            input_file.unlink()

        output_dir = Path(job['output_dir'])
        if output_dir.exists():
            shutil.rmtree(output_dir)
    except OSError as e:
        logger.error(f"Failed to delete job {job_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to delete job: {str(e)}")

    with job_lock:
        job_status.pop(job_id, None)
        job_results.pop(job_id, None)
        job_tokens.pop(job_id, None)

    logger.info(f"Deleted job {job_id} and associated files")
    return {"message": f"Job {job_id} and associated files deleted successfully"}


def start_server(host: str = "0.0.0.0", port: int = config.API_PORT, reload: bool = False):
    """Start the FastAPI server."""
    logger.info(f"Starting Tabular Transformation Pipeline API server on {host}:{port}")
    uvicorn.run(
        "api_server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server(reload=True)
