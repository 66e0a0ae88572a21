import os
import threading
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import FileResponse

from .database import Base, engine
from .errors import InvalidFormatError, ScanNotFoundError
from .log import setup_logging
from .schemas import ScanOut, ScanRequest, ScanStatusOut
from .worker import ScanManager

_manager: Optional[ScanManager] = None
_manager_lock = threading.Lock()


def get_manager() -> ScanManager:
    global _manager
    # sync endpoints run in a threadpool; only one manager may own the process registry
    with _manager_lock:
        if _manager is None:
            _manager = ScanManager()
        return _manager


def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    # authentication happens upstream; we only need the caller's identity
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user id")
    return x_user_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Base.metadata.create_all(bind=engine)
    yield
    if _manager is not None:
        _manager.shutdown(wait=False)


app = FastAPI(title="ChimeraScan", lifespan=lifespan)


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/scan/start", status_code=202)
def start_scan(
    req: ScanRequest,
    owner_id: str = Depends(get_owner_id),
    manager: ScanManager = Depends(get_manager),
):
    scan_id = manager.submit(req.target_url, owner_id, req.project_id)
    return {"scan_id": scan_id, "message": "Scan started successfully", "status": "Queued"}


@app.post("/api/scan/stop/{scan_id}")
def stop_scan(
    scan_id: str,
    owner_id: str = Depends(get_owner_id),
    manager: ScanManager = Depends(get_manager),
):
    try:
        status = manager.stop(scan_id, owner_id)
    except ScanNotFoundError:
        raise HTTPException(status_code=404, detail="Scan not found")
    return {"message": "Scan stopped successfully", "status": status}


@app.get("/api/scan/status/{scan_id}", response_model=ScanStatusOut)
def scan_status(
    scan_id: str,
    owner_id: str = Depends(get_owner_id),
    manager: ScanManager = Depends(get_manager),
):
    try:
        return manager.status(scan_id, owner_id)
    except ScanNotFoundError:
        raise HTTPException(status_code=404, detail="Scan not found")


@app.get("/api/scans", response_model=List[ScanOut])
def list_scans(owner_id: str = Depends(get_owner_id), manager: ScanManager = Depends(get_manager)):
    return manager.list_scans(owner_id)


@app.get("/api/report/{scan_id}/{fmt}")
def download_report(
    scan_id: str,
    fmt: str,
    owner_id: str = Depends(get_owner_id),
    manager: ScanManager = Depends(get_manager),
):
    try:
        path = manager.artifact_path(scan_id, owner_id, fmt)
    except InvalidFormatError:
        raise HTTPException(status_code=400, detail="Invalid format")
    except ScanNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return FileResponse(path, filename=os.path.basename(path))
