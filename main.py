from fastapi import FastAPI, status
import os
import logging
from datetime import datetime
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from config import get_settings
from models import RulesImportRequest, SubmissionRequest, TableDetectionRequest
from rules_parser import bind_rules, generate_example_rules, parse_rules_content
from validation_orchestrator import SubmissionProcessor
from utils.result import Result

settings = get_settings()

# Create logs directory if it doesn't exist
os.makedirs(settings.log_dir, exist_ok=True)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Add file handler to write logs to file
log_file_path = os.path.join(settings.log_dir, f"validator_{datetime.now().strftime('%Y%m%d')}.log")
file_handler = logging.FileHandler(log_file_path)
file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
logging.getLogger().addHandler(file_handler)


UPLOAD_PREFIX = "uploads/"


def resolve_file_path(file_path: str) -> str:
    """
    Convert 'uploads/' references to paths inside the configured upload directory

    Args:
        file_path: Path as stored by the submission layer, possibly prefixed with 'uploads/'

    Returns:
        Resolved file path; other paths are returned unchanged
    """
    if file_path and file_path.startswith(UPLOAD_PREFIX):
        relative_path = file_path.replace(UPLOAD_PREFIX, "", 1)
        return os.path.join(settings.upload_dir, relative_path)
    return file_path


def respond(result: Result) -> JSONResponse:
    return JSONResponse(status_code=result.status_code.value, content=result.to_dict())


# Initialize FastAPI app with metadata
app = FastAPI(
    title="Submission Validator API",
    description="API for validating spreadsheet and CSV submissions against template rules",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def log_progress(submission_id):
    def _log(percent: int, message: str) -> None:
        logger.info(f"Validation progress for submission {submission_id}: {percent}% - {message}")
    return _log


# API Endpoints
@app.post("/validate", tags=["Validation"])
async def validate_submission(request: SubmissionRequest):
    """
    Validate a stored submission file against the given rules.

    Returns:
        JSON envelope whose data holds:
            - results: one entry per checked cell
            - summary: total/passed/failed counts split by severity
            - status: passed, needs_review or failed
    """
    request = request.model_copy(update={"file_path": resolve_file_path(request.file_path)})
    result = SubmissionProcessor.process(request, on_progress=log_progress(request.submission_id))
    return respond(result)


@app.post("/rules/parse", tags=["Rules"])
async def parse_rules(request: RulesImportRequest):
    """
    Parse validation rules written in the rules text format.

    Blocks missing a field, rule, condition or error message are skipped;
    the request fails only when no rule survives.
    """
    parsed = parse_rules_content(request.rules_text)
    if not parsed:
        logger.warning("No valid rules found in the provided text")
        return respond(Result.invalid_input("No valid rules found in the provided text"))
    rules = bind_rules(parsed, template_id=request.template_id)
    return respond(Result.ok({"imported": len(rules), "rules": [rule.model_dump(mode="json") for rule in rules]}))


@app.get("/rules/example", tags=["Rules"])
async def example_rules():
    """Example rules text covering every rule type."""
    return {"rules_text": generate_example_rules()}


@app.post("/tables", tags=["Ingestion"])
async def detect_tables(request: TableDetectionRequest):
    """Detect vertical and matrix tables in every sheet of a file."""
    result = SubmissionProcessor.detect_tables(resolve_file_path(request.file_path))
    return respond(result)


@app.get("/health", tags=["Health"], status_code=status.HTTP_200_OK)
async def health():
    return {"status": "ok"}


# Run the application if executed directly
if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Submission Validator API in development mode.")
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
