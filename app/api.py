"""
FastAPI routes for expense uploads, the emissions ledger, analytics and reports.
Ingestion and PDF rendering run as background tasks; callers poll for status.
"""
import datetime as dt
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, JSONResponse

from core.config import get_settings
from core.db import get_db
from core.exceptions import (
    CarbonLedgerException,
    DataNotFoundError,
    ParsingError,
    ValidationError,
)
from core.emissions import search_emission_factors
from core.extraction import extract_text_from_pdf
from core.logger import setup_logger
from core.schema import (
    CarbonBudget,
    CarbonCost,
    CarbonIntensity,
    EmissionFactor,
    EmissionTrend,
    EmissionsSummary,
    LedgerTransaction,
    MonthlyEmissions,
    ReductionOpportunity,
    RemoteEmissionFactor,
    Report,
    ReportRequest,
    ScopeAnalysis,
    SectorBenchmark,
    TransactionCorrection,
    UploadBatch,
)
from services.analytics_service import AnalyticsService
from services.report_service import ReportService
from services.transaction_service import TransactionService

logger = setup_logger(__name__)

app = FastAPI(
    title="Carbon Ledger Service",
    description="Turn expense records into a GHG Protocol emissions ledger and reports",
    version="1.0.0"
)

DOCUMENT_EXTENSIONS = (".pdf", ".txt")


def get_transaction_service() -> TransactionService:
    return TransactionService()


def get_analytics_service() -> AnalyticsService:
    return AnalyticsService()


def get_report_service() -> ReportService:
    return ReportService()


@app.exception_handler(DataNotFoundError)
async def not_found_handler(request: Request, exc: DataNotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message, "details": exc.details})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.message, "details": exc.details})


@app.exception_handler(ParsingError)
async def parsing_error_handler(request: Request, exc: ParsingError):
    return JSONResponse(status_code=400, content={"detail": exc.message, "details": exc.details})


@app.exception_handler(CarbonLedgerException)
async def ledger_error_handler(request: Request, exc: CarbonLedgerException):
    logger.error(f"Unhandled {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=500, content={"detail": exc.message, "details": exc.details})


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "carbon_ledger",
        "version": "1.0.0",
        "remote_classifier": settings.remote_classifier_enabled,
        "remote_factors": settings.remote_factors_enabled,
    }


def batch_status(batch: UploadBatch) -> Dict[str, Any]:
    """Polling view of an upload batch."""
    return {
        "id": batch.id,
        "filename": batch.filename,
        "status": batch.status.value,
        "totalRows": batch.total_rows,
        "processedRows": batch.processed_rows,
        "errorMessage": batch.error_message,
        "rowErrors": batch.row_errors,
        "createdAt": batch.created_at,
        "completedAt": batch.completed_at,
    }


def validate_file_extension(filename: Optional[str], allowed: tuple) -> None:
    """
    Validate file has an allowed extension.

    Raises:
        HTTPException: If file extension is invalid
    """
    if not filename or not filename.lower().endswith(allowed):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type: {filename}. Only {', '.join(allowed)} supported."
        )


async def read_upload(file: UploadFile) -> bytes:
    """Read an upload, enforcing the configured size limit."""
    content = await file.read()
    max_bytes = get_settings().max_upload_bytes
    if len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"File exceeds {max_bytes} bytes")
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return content


@app.post("/uploads", status_code=202)
async def upload_csv(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    service: TransactionService = Depends(get_transaction_service)
):
    """
    Accept a CSV expense file and start background ingestion.
    Returns immediately with the upload id for status polling.
    """
    logger.info(f"Received CSV upload: {file.filename}")
    validate_file_extension(file.filename, (".csv",))
    content = await read_upload(file)

    try:
        raw_text = content.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File must be UTF-8 encoded")

    batch = service.create_upload(file.filename, len(content))
    background_tasks.add_task(service.process_csv_upload, batch.id, raw_text, batch.user_id)

    logger.info(f"Upload {batch.id} queued for processing")
    return {
        "upload_id": batch.id,
        "status": batch.status.value,
        "message": "Processing started. Use upload_id to check status."
    }


async def process_document_background(
    service: TransactionService,
    upload_id: str,
    user_id: str,
    document_path: Path
) -> None:
    """
    Background task: pull text from a stored document and ingest it.

    Args:
        service: Transaction service
        upload_id: Batch identifier
        user_id: Ledger owner
        document_path: Stored upload (PDF or plain text)
    """
    try:
        if document_path.suffix.lower() == ".pdf":
            text = await run_in_threadpool(extract_text_from_pdf, str(document_path))
        else:
            text = document_path.read_text(encoding="utf-8", errors="replace")
        await service.process_document_upload(upload_id, text, user_id, dt.date.today())
    finally:
        try:
            if document_path.exists():
                document_path.unlink()
                logger.debug(f"Cleaned up: {document_path}")
        except OSError as cleanup_error:
            logger.warning(f"Failed to cleanup {document_path}: {cleanup_error}")


@app.post("/uploads/document", status_code=202)
async def upload_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    service: TransactionService = Depends(get_transaction_service)
):
    """Accept a scanned/PDF or plain-text document and start background extraction."""
    logger.info(f"Received document upload: {file.filename}")
    validate_file_extension(file.filename, DOCUMENT_EXTENSIONS)
    content = await read_upload(file)

    batch = service.create_upload(file.filename, len(content))
    document_path = Path(get_settings().temp_storage_path) / f"{batch.id}_{Path(file.filename).name}"
    document_path.parent.mkdir(parents=True, exist_ok=True)
    document_path.write_bytes(content)

    background_tasks.add_task(process_document_background, service, batch.id, batch.user_id, document_path)

    logger.info(f"Document upload {batch.id} queued for processing")
    return {
        "upload_id": batch.id,
        "status": batch.status.value,
        "message": "Processing started. Use upload_id to check status."
    }


@app.get("/uploads")
async def list_uploads():
    settings = get_settings()
    return [batch_status(batch) for batch in get_db().list_uploads(settings.default_user_id)]


@app.get("/uploads/{upload_id}")
async def get_upload_status(upload_id: str):
    """Get status of an upload batch."""
    return batch_status(get_db().get_upload(upload_id))


@app.get("/transactions/export")
async def export_transactions(
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    service: TransactionService = Depends(get_transaction_service)
):
    """Download the ledger as an Excel workbook."""
    output_path = service.export_transactions(start_date=start_date, end_date=end_date)
    return FileResponse(
        path=output_path,
        filename=Path(output_path).name,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )


@app.get("/transactions", response_model=List[LedgerTransaction])
async def list_transactions(
    upload_id: Optional[str] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None
):
    settings = get_settings()
    return get_db().get_transactions(settings.default_user_id, start_date, end_date, upload_id)


@app.patch("/transactions/{transaction_id}", response_model=LedgerTransaction)
async def correct_transaction(
    transaction_id: int,
    correction: TransactionCorrection,
    service: TransactionService = Depends(get_transaction_service)
):
    """Reclassify a transaction; emissions are recomputed and the row is marked verified."""
    return service.correct_transaction(transaction_id, correction)


@app.post("/transactions/{transaction_id}/verify", response_model=LedgerTransaction)
async def verify_transaction(
    transaction_id: int,
    service: TransactionService = Depends(get_transaction_service)
):
    return service.verify_transaction(transaction_id)


@app.get("/emissions/summary", response_model=EmissionsSummary)
async def emissions_summary(
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.summary(start_date=start_date, end_date=end_date)


@app.get("/emissions/trend", response_model=List[MonthlyEmissions])
async def emissions_trend(
    months: int = Query(12, ge=1, le=60),
    service: AnalyticsService = Depends(get_analytics_service)
):
    """Monthly totals split by scope."""
    return service.monthly_trend(months=months)


@app.get("/analytics/carbon-intensity", response_model=CarbonIntensity)
async def carbon_intensity(
    revenue: float = Query(..., gt=0),
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.carbon_intensity(revenue, start_date=start_date, end_date=end_date)


@app.get("/analytics/trends", response_model=List[EmissionTrend])
async def emission_trends(
    periods: int = Query(12, ge=1, le=60),
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.trends(periods=periods)


@app.get("/analytics/carbon-budget", response_model=CarbonBudget)
async def carbon_budget(
    annual_target: float = Query(..., gt=0),
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.carbon_budget(annual_target)


@app.get("/analytics/benchmarking", response_model=SectorBenchmark)
async def benchmarking(
    revenue: float = Query(..., gt=0),
    sector: str = Query("default"),
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.benchmark(revenue, sector, start_date=start_date, end_date=end_date)


@app.get("/analytics/scope-analysis", response_model=ScopeAnalysis)
async def scope_analysis(
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.scope_analysis(start_date=start_date, end_date=end_date)


@app.get("/analytics/reduction-opportunities", response_model=List[ReductionOpportunity])
async def reduction_opportunities(
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.reduction_opportunities(start_date=start_date, end_date=end_date)


@app.get("/analytics/carbon-costs", response_model=CarbonCost)
async def carbon_costs(
    carbon_price: Optional[float] = Query(None, gt=0),
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    service: AnalyticsService = Depends(get_analytics_service)
):
    return service.carbon_costs(carbon_price, start_date=start_date, end_date=end_date)


@app.get("/emission-factors", response_model=List[EmissionFactor])
async def list_emission_factors():
    return get_db().get_emission_factors()


@app.get("/emission-factors/search", response_model=List[RemoteEmissionFactor])
async def search_factors(
    query: Optional[str] = None,
    category: Optional[str] = None,
    region: Optional[str] = None,
    year: Optional[int] = None,
    limit: int = Query(20, ge=1, le=100)
):
    """Search the remote factor database, or the stored factors when it is unavailable."""
    return await run_in_threadpool(
        search_emission_factors, query, category, region, year, limit
    )


@app.post("/reports", status_code=202, response_model=Report)
async def create_report(
    request: ReportRequest,
    background_tasks: BackgroundTasks,
    service: ReportService = Depends(get_report_service)
):
    """Register a PDF report and render it in the background."""
    report = service.create_pdf_report(request)
    background_tasks.add_task(service.generate_pdf, report.id, request)
    logger.info(f"Report {report.id} queued for generation")
    return report


@app.post("/reports/xbrl")
async def create_xbrl_report(
    request: ReportRequest,
    service: ReportService = Depends(get_report_service)
):
    """Generate and validate an XBRL report synchronously."""
    return service.create_xbrl_report(request)


@app.get("/reports", response_model=List[Report])
async def list_reports():
    return get_db().list_reports(get_settings().default_user_id)


@app.get("/reports/{report_id}", response_model=Report)
async def get_report(report_id: str):
    return get_db().get_report(report_id)


@app.get("/reports/{report_id}/download")
async def download_report(report_id: str):
    """Download a generated report document."""
    report = get_db().get_report(report_id)
    if report.status != "completed" or not report.file_path:
        raise HTTPException(status_code=409, detail=f"Report is {report.status}")

    file_path = Path(report.file_path)
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found")

    media_type = "application/pdf" if report.report_type == "pdf" else "application/xml"
    return FileResponse(path=str(file_path), filename=file_path.name, media_type=media_type)
