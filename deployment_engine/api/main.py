# deployment_engine/api/main.py
from fastapi import FastAPI

from deployment_engine.api.routes.health import router as system_checks_router

app = FastAPI(title="Deployment Engine API")


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(system_checks_router)
