"""
Company-level settings.
"""

from fastapi import APIRouter, Depends

from busbooking.core.security import Actor, get_current_staff
from busbooking.db.session import Database, get_database
from busbooking.schemas.trip import AutoHaltSettingUpdate, CompanyAutoHaltResponse
from busbooking.services.trip_service import set_company_auto_halt_bypass

router = APIRouter(prefix="/companies", tags=["Companies"])


@router.put("/{company_id}/auto-halt-setting", response_model=CompanyAutoHaltResponse)
async def company_auto_halt_setting_endpoint(
    company_id: int,
    body: AutoHaltSettingUpdate,
    actor: Actor = Depends(get_current_staff),
    database: Database = Depends(get_database),
):
    """Company-wide auto-halt bypass for every trip of the company."""
    company = await set_company_auto_halt_bypass(database, actor, company_id, body.bypass_enabled)
    return CompanyAutoHaltResponse(
        company_id=company.id,
        disable_auto_halt_globally=company.disable_auto_halt_globally,
    )
