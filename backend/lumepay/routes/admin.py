from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from lumepay.database import get_db
from lumepay.deps import admin_required
from lumepay.models.merchant import Merchant
from lumepay.schemas.merchant import WaitlistConfigUpdate
from lumepay.services.system_settings import (
    SettingsCache,
    get_waitlist_cache,
    load_waitlist_config,
    update_waitlist_config,
)

router = APIRouter(tags=["Admin"])


@router.get("/waitlist/status")
def waitlist_status(waitlist: SettingsCache = Depends(get_waitlist_cache)):
    config = waitlist.get()
    return {"enabled": config.enabled, "message": config.message}


@router.get("/admin/waitlist/config")
def get_waitlist_config(
    db: Session = Depends(get_db),
    admin: Merchant = Depends(admin_required),
):
    config = load_waitlist_config(db)
    return {"enabled": config.enabled, "message": config.message}


@router.post("/admin/waitlist/config")
def set_waitlist_config(
    payload: WaitlistConfigUpdate,
    db: Session = Depends(get_db),
    admin: Merchant = Depends(admin_required),
    waitlist: SettingsCache = Depends(get_waitlist_cache),
):
    config = update_waitlist_config(db, payload.enabled, payload.message, admin.email, waitlist)
    return {
        "message": "Waitlist configuration updated successfully",
        "config": {"enabled": config.enabled, "message": config.message},
    }
