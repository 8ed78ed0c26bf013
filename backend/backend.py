import logging
import os
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Force load .env from the script's directory, before the module reads its settings
env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(dotenv_path=env_path, override=True)

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from attendance_module import init_attendance_module, router as attendance_router
from attendance_module.config import settings
from attendance_module.database import engine
from attendance_module.notifications import WhatsAppDispatcher

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        logger.info("Initializing GPS attendance module...")
        init_attendance_module()
        logger.info("GPS attendance module initialized.")
    except Exception as e:
        logger.error(f"Startup attendance module error: {e}")
        raise

    executor = ThreadPoolExecutor(max_workers=settings.notify_workers, thread_name_prefix="notify")
    app.state.notification_executor = executor
    app.state.notification_dispatcher = WhatsAppDispatcher()

    yield
    # Shutdown
    logger.info("Shutting down...")
    executor.shutdown(wait=False, cancel_futures=True)


app = FastAPI(title="School GPS Attendance API", lifespan=lifespan)

origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(attendance_router)


@app.get("/api/health")
def health_check():
    """Health check endpoint to verify backend is running and the database answers"""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"status": "degraded", "database": "unreachable"}


def serve() -> None:
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("backend:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    serve()
