"""
Tally Excel export/import endpoints
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response

from ..errors import ValidationError
from ..tally import import_template
from .dependencies import BookkeepingSystem, get_system, get_tenant_id


router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _workbook_response(content: bytes, name: str) -> Response:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{name}_{stamp}.xlsx"'}
    )


@router.get("/export/vouchers")
async def export_vouchers(
    voucher_type_id: Optional[str] = Query(None, alias="voucherTypeId"),
    numbering_series_id: Optional[str] = Query(None, alias="numberingSeriesId"),
    from_date: Optional[str] = Query(None, alias="fromDate"),
    to_date: Optional[str] = Query(None, alias="toDate"),
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    content = system.tally_exporter.export_vouchers(
        tenant_id,
        voucher_type_id=voucher_type_id,
        numbering_series_id=numbering_series_id,
        from_date=from_date,
        to_date=to_date
    )
    return _workbook_response(content, "vouchers")


@router.get("/export/ledgers")
async def export_ledgers(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    return _workbook_response(system.tally_exporter.export_ledgers(tenant_id), "ledgers")


@router.get("/export/gst")
async def export_gst(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    return _workbook_response(system.tally_exporter.export_gst(tenant_id), "gst")


@router.get("/template")
async def download_template():
    return _workbook_response(import_template(), "tally_import_template")


@router.post("/import")
async def import_workbook(
    file: UploadFile = File(...),
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Import a Tally workbook; per-row problems are reported, not raised"""
    file_name = file.filename or "import.xlsx"
    if not file_name.lower().endswith((".xlsx", ".xlsm")):
        raise ValidationError("Only .xlsx workbooks can be imported")
    content = await file.read()
    if not content:
        raise ValidationError("Uploaded file is empty")

    stats = system.tally_importer.import_workbook(tenant_id, content, file_name=file_name)
    message = (f"Imported {stats.ledgers_created} ledgers, {stats.parties_created} parties "
               f"and {stats.vouchers_created} vouchers")
    return {"success": True, "data": stats.to_api(), "message": message}


@router.get("/imports")
async def list_imports(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    history = system.tally_importer.list_history(tenant_id)
    return {
        "success": True,
        "data": [
            {
                "id": h["id"],
                "fileName": h["file_name"],
                "importType": h["import_type"],
                "totalRecords": h["total_records"],
                "successCount": h["success_count"],
                "failureCount": h["failure_count"],
                "summary": h["summary"],
                "createdAt": h["created_at"],
            }
            for h in history
        ]
    }
