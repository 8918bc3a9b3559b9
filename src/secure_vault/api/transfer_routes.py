# Import / Export API
#
# Import takes either a file path (read by the backend) or the file
# content sent by the UI. Export writes to a path, or returns the
# serialized content when no path is given.

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..interchange import EXPORT_FORMATS, SUPPORTED_FORMATS, TransferService
from ..vault.session import SessionManager
from .security import verify_session_token
from .vault_routes import get_session, run_vault_call

router = APIRouter(prefix="/api/vault", tags=["import-export"])


class ImportRequest(BaseModel):
    path: Optional[str] = None
    filename: Optional[str] = None
    content: Optional[str] = None
    password: Optional[str] = None
    format: Optional[str] = None
    merge: bool = True


class ExportRequest(BaseModel):
    format: str
    path: Optional[str] = None
    password: Optional[str] = None


@router.get("/formats")
async def list_formats(token: str = Depends(verify_session_token)):
    return {"import": SUPPORTED_FORMATS, "export": EXPORT_FORMATS}


@router.post("/import")
async def import_data(
    request: ImportRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    """
    Import another manager's export.

    Returns ``{success, imported, skipped, errors, format, entries}``;
    rejected rows are reported in ``errors``, not raised.
    """
    service = TransferService(session)
    if request.content is not None:
        result = await run_vault_call(
            service.import_content,
            request.filename or request.path,
            request.content,
            request.password,
            request.merge,
            request.format,
        )
    elif request.path:
        result = await run_vault_call(
            service.import_file, request.path, request.password, request.merge, request.format
        )
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either path or content is required",
        )
    return result.to_dict()


@router.post("/export")
async def export_data(
    request: ExportRequest,
    token: str = Depends(verify_session_token),
    session: SessionManager = Depends(get_session),
):
    service = TransferService(session)
    if request.path:
        return await run_vault_call(
            service.export_vault, request.format, request.path, request.password
        )
    content, count = await run_vault_call(service.export_content, request.format, request.password)
    return {"success": True, "count": count, "format": request.format, "content": content}
