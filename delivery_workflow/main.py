# main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from delivery_workflow.config import LOG_LEVEL
from delivery_workflow.errors import WorkflowError
from delivery_workflow.logging_config import configure_logging
from delivery_workflow.routers import api, projects, workflow_definitions, workflow_instances

configure_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Delivery Workflow",
    redirect_slashes=False,
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.debug("%s %s rejected with %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


# Include routers
app.include_router(api.router)
app.include_router(workflow_definitions.router)
app.include_router(workflow_instances.router)
app.include_router(projects.router)
