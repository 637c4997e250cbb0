"""
API Router module that combines all API endpoints
"""
from fastapi import APIRouter

from inkpipe.api.files import router as files_router
from inkpipe.api.transcribe import router as transcribe_router
from inkpipe.api.uploads import router as uploads_router
from inkpipe.api.worker import router as worker_router

router = APIRouter()

router.include_router(uploads_router)
router.include_router(files_router)
router.include_router(worker_router)
router.include_router(transcribe_router)
