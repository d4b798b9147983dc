from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import settings
from qemu_supervisor import QMPError, VMError, VMStateError
from routes import vms, vms_router

logger = logging.getLogger("qemu_supervisor.service")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    stopped = await vms.registry.stop_all()
    if stopped:
        logger.info("Stopped %d VMs on shutdown", stopped)


# ===== FastAPI app =====
app = FastAPI(title="qemu-supervisor", version="0.1.0", lifespan=lifespan)


@app.exception_handler(VMStateError)
async def vm_state_error_handler(_request: Request, exc: VMStateError):
    return JSONResponse({"detail": str(exc)}, status_code=409)


@app.exception_handler(VMError)
async def vm_error_handler(_request: Request, exc: VMError):
    return JSONResponse({"detail": str(exc)}, status_code=500)


@app.exception_handler(QMPError)
async def qmp_error_handler(_request: Request, exc: QMPError):
    return JSONResponse({"detail": exc.desc, "error": exc.payload}, status_code=400)


@app.get("/health")
async def health():
    return JSONResponse({"ok": "True"})


app.include_router(vms_router)

# ===== Entrypoint =====
if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("main:app", host="0.0.0.0", port=8080, reload=False)
