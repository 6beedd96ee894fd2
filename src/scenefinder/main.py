import logging
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .agents import INVALID_URL, LinkAnalyzer
from .config import Settings
from .schemas import AnalyzeLinkRequest, AnalyzeLinkResponse, ErrorResponse, HealthResponse
from .utils import LinkAnalysisError


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache
def get_analyzer() -> LinkAnalyzer:
    return LinkAnalyzer(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    upload_dir = get_settings().upload_dir
    try:
        upload_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logging.error(f"Failed to create uploads directory {upload_dir}: {e}")
        raise
    yield


app = FastAPI(
    title="SceneFinder Link API",
    description="API for identifying the movie or show scene behind a YouTube or Instagram clip",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Bad request bodies are client errors, not 422s
@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": INVALID_URL})


@app.get("/", response_model=HealthResponse, summary="Health check")
async def health():
    return {"status": "OK", "message": "SceneFinder link backend is running"}


@app.post(
    "/api/analyze-link",
    response_model=AnalyzeLinkResponse,
    responses={
        200: {
            "description": "Scene identified",
            "model": AnalyzeLinkResponse,
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "data": {
                            "movie": "The Avengers",
                            "season": None,
                            "episode": None,
                            "characters": ["Tony Stark"],
                            "timestamp": "Unknown",
                            "summary": "Tony Stark's reveal line.",
                        },
                    }
                }
            },
        },
        400: {
            "description": "Bad Request - Missing, unsupported or inaccessible URL",
            "model": ErrorResponse,
            "content": {
                "application/json": {
                    "examples": {
                        "invalid_url": {"value": {"error": "Invalid or missing URL"}},
                        "unsupported": {"value": {"error": "Unsupported URL. Only YouTube and Instagram links are supported."}},
                        "youtube": {"value": {"error": "Failed to process YouTube URL. Ensure it is a valid, public video."}},
                        "instagram": {"value": {"error": "Failed to process Instagram URL. Ensure it is a public video or reel."}},
                    }
                }
            },
        },
        429: {
            "description": "YouTube rate limit exceeded",
            "model": ErrorResponse,
        },
        500: {
            "description": "Internal Server Error - Disk space, empty download, transcription or model failure",
            "model": ErrorResponse,
        },
    },
    summary="Analyze Link",
    description="Downloads the clip's audio, transcribes it and asks a language model which scene it comes from",
)
async def analyze_link(payload: AnalyzeLinkRequest, analyzer: LinkAnalyzer = Depends(get_analyzer)):
    try:
        scene_details = await analyzer.analyze(payload.url)
    except LinkAnalysisError as e:
        logging.warning(f"Analysis failed for {payload.url} ({e.status_code}): {e.message}")
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except Exception as e:
        logging.exception(f"Unexpected error processing link {payload.url}: {e}")
        return JSONResponse(status_code=500, content={"error": str(e) or "Internal server error"})
    return {"success": True, "data": scene_details}
