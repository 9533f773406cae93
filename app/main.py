from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import router
from app.api.dependencies import shutdown_verification_service
from app.config.settings import settings
from app.core.exceptions import FaceVerificationError
from app.utils.logger import log
from app.utils.security import require_api_token


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info(f"{settings.PROJECT_NAME} starting")
    yield
    shutdown_verification_service()
    log.info(f"{settings.PROJECT_NAME} stopped")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    router, prefix=settings.API_PREFIX, dependencies=[Depends(require_api_token)]
)


@app.exception_handler(FaceVerificationError)
async def face_verification_error_handler(request: Request, exc: FaceVerificationError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
def read_root():
    return {"message": "Face Verify API is running!"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}
