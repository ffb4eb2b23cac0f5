import logging

from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from sis_app.config import settings
from sis_app.middleware import add_cors_middleware, add_error_handlers
from sis_app.routes import academics, gradebook, mastery, scheduling
from sis_app.utils.system_utils import local_now

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.APP_TITLE,
              description="Scheduling, gradebook and mastery services for a school information system",
              version=settings.APP_VERSION)
add_cors_middleware(app)
add_error_handlers(app)


@app.get("/", include_in_schema=False)
async def root():
    """
    Root endpoint that redirects to the API documentation
    """
    return RedirectResponse(url="/docs")


@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok", "version": settings.APP_VERSION, "time": local_now().isoformat()}


app.include_router(academics.router)
app.include_router(scheduling.router)
app.include_router(gradebook.router)
app.include_router(mastery.router)
