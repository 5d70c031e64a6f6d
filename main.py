import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from XRAY.services import analysis_service_v1 as analysis

logging.basicConfig(level=logging.INFO)

app = FastAPI(root_path="/python", title="Dental X-ray Analysis", version=analysis.SCHEMA_VERSION)
app.include_router(analysis.router)


# Ensures that even errors are returned as JSON, not HTML
@app.exception_handler(404)
async def custom_404_handler(request: Request, __):
    return JSONResponse(
        status_code=404,
        content={"detail": "Not Found", "path": request.url.path},
    )


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
    # Tells browsers to only use HTTPS
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    # Reports carry patient data; keep them out of proxy caches
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"

    return response
