"""
Parsing microservice.

Runs as its own process on the loopback interface so that parsing very large
uploaded playlists never blocks the API's event loop. Only the background
worker calls it.

    POST /parse  {"filePath": "/abs/path/file.m3u"}  ->  {"items": [...]}
"""
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import get_settings
from errors import TransientIOError
from log_utils import configure_logging
from m3u_parser import parse_m3u_from_file

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Restream Panel Parser",
    description="Loopback-only M3U parsing service",
    version="1.0.0",
)


class ParseRequest(BaseModel):
    filePath: Optional[str] = None


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "restream-panel-parser"}


@app.post("/parse")
async def parse_file(request: ParseRequest):
    if not request.filePath:
        return JSONResponse(status_code=400, content={"message": "Missing required field: filePath"})

    absolute_path = Path(request.filePath).resolve()
    logger.info("[PARSER-SERVICE] Received request to parse %s", absolute_path)
    try:
        parsed = await parse_m3u_from_file(absolute_path)
    except TransientIOError as e:
        logger.error("[PARSER-SERVICE] Error parsing %s: %s", absolute_path, e.message)
        return JSONResponse(status_code=500, content={"message": e.message})

    logger.info("[PARSER-SERVICE] Parsed %s: %d items", absolute_path, len(parsed.items))
    return parsed.to_dict()


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    # Loopback only: the service trusts the paths it is given
    uvicorn.run(app, host=settings.parser_host, port=settings.parser_port)


if __name__ == "__main__":
    main()
