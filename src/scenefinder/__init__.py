import uvicorn
from .main import app, get_settings

def main() -> None:
    """Entry point for running the FastAPI server."""
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
