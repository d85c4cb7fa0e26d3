import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

load_dotenv()

from . import assemblyai, azure_speech, fal, gemini, metrics, pexels, supabase_client
from .auth_middleware import AdminAuthMiddleware
from .errors import GenerationError
from .ledger.cache import get_redis
from .ledger.routes import admin_router, credits_router, usage_router
from .pipeline.routes import gallery_router, pipeline_router
from .proxy import proxy_router

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storyreel")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Worker starting up...")
    metrics.set_gauge("start_time", time.time())
    if not supabase_client.is_configured():
        logger.warning("Supabase not configured — ledger and artifacts are in-memory only")
    if get_redis() is None:
        logger.info("No Redis — usage cache is process-local")
    yield
    logger.info("Worker shutting down...")


app = FastAPI(title="storyreel", lifespan=lifespan)
app.add_middleware(AdminAuthMiddleware)

app.include_router(pipeline_router)
app.include_router(gallery_router)
app.include_router(usage_router)
app.include_router(admin_router)
app.include_router(credits_router)
app.include_router(proxy_router)


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.get("/health")
def health_check():
    """Verify the worker is running and which collaborators are configured."""
    return {
        "status": "ok",
        "supabase_configured": supabase_client.is_configured(),
        "redis_configured": bool(os.environ.get("REDIS_URL")),
        "vendors": {
            "fal": bool(fal.FAL_KEY),
            "gemini": bool(gemini.GEMINI_API_KEY),
            "pexels": pexels.is_configured(),
            "azure_speech": bool(azure_speech.AZURE_SPEECH_API_KEY),
            "assemblyai": bool(assemblyai.ASSEMBLYAI_API_KEY),
        },
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all worker metrics."""
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("storyreel.main:app", host="0.0.0.0", port=port, reload=True)
