from contextlib import asynccontextmanager
import logging

import aiohttp
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

from apigw_fargate.routes.deployments import router as deployments_router
from apigw_fargate.routes.logs import router as logs_router
from apigw_fargate.routes.probe import router as probe_router
from apigw_fargate.routes.topology import router as topology_router
from apigw_fargate.services.asset_sync_service import AssetSyncError
from apigw_fargate.services.cloudformation_service import CloudFormationServiceError
from apigw_fargate.services.probe_service import ProbeError
from apigw_fargate.services.s3_service import S3ServiceError
from apigw_fargate.services.topology import TopologyValidationError


def _ensure_logging() -> None:
    formatter = logging.Formatter("%(levelname)s: %(message)s")
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    else:
        root.setLevel(logging.INFO)
        for handler in root.handlers:
            handler.setFormatter(formatter)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _ensure_logging()
    app.state.http_session = aiohttp.ClientSession()
    try:
        yield
    finally:
        await app.state.http_session.close()


app = FastAPI(lifespan=lifespan)

app.include_router(topology_router)
app.include_router(deployments_router)
app.include_router(logs_router)
app.include_router(probe_router)


@app.exception_handler(S3ServiceError)
@app.exception_handler(CloudFormationServiceError)
@app.exception_handler(AssetSyncError)
@app.exception_handler(ProbeError)
async def aws_service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map AWS service-layer failures to a consistent HTTP response.

    Provisioning and storage errors surface synchronously; nothing is retried
    here, the caller decides whether to apply again.

    Returns:
        502 Bad Gateway with a JSON body: {"detail": "..."}
    """
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc)},
    )


@app.exception_handler(TopologyValidationError)
async def topology_validation_error_handler(request: Request, exc: TopologyValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid topology", "violations": exc.violations},
    )


@app.exception_handler(ValueError)
async def configuration_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


@app.get("/")
async def root():
    return {"message": "API Gateway -> Fargate topology controller is running."}
