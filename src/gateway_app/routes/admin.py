# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Admin and utility API routes.

This module contains the credential management endpoints (/admin/...),
all guarded by ADMIN_KEY, plus the unauthenticated /debug/version probe.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from gateway_library import CredentialAdmin
from gateway_library.translation import MODEL_MAP

from gateway_app import __version__
from gateway_app.dependencies import get_credential_admin, verify_admin_key
from gateway_app.error_mapping import map_gateway_error
from gateway_app.models import (
    AddCredentialRequest,
    CredentialStatus,
    RefreshResult,
    RenameCredentialRequest,
    SweepSummary,
    VersionInfo,
)

logger = logging.getLogger(__name__)
router = APIRouter()

FEATURES = [
    "custom-token-auth",
    "admin-http-api",
    "multi-key-load-balance",
    "auto-refresh",
    "persistent-storage",
]


@router.get("/admin/status", response_model=List[CredentialStatus])
async def credential_status(
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    """Per-credential summary: enablement, expiry and usage counters."""
    return await admin.status()


@router.get("/admin/stats")
async def usage_stats(
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    """Global request counters, per-key ranking and gateway event counters."""
    return await admin.stats()


@router.post("/admin/refresh-all", response_model=SweepSummary)
async def refresh_all(
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    """Force a refresh of every enabled credential, regardless of expiry."""
    try:
        result = await admin.refresh_all()
    except Exception as e:
        return map_gateway_error(e, "refresh_all")
    return {**result.to_dict(), "results": [r.to_dict() for r in result.reports]}


@router.post("/admin/keys", response_model=CredentialStatus)
async def add_credential(
    body: AddCredentialRequest,
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    try:
        record = await admin.add_from_oauth_json(
            body.label, body.credentials, added_by=body.added_by or "admin-api"
        )
        return next(s for s in await admin.status() if s["label"] == record.label)
    except Exception as e:
        return map_gateway_error(e, "add_credential")


@router.delete("/admin/keys/{label}")
async def remove_credential(
    label: str,
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    try:
        await admin.remove(label)
    except Exception as e:
        return map_gateway_error(e, "remove_credential")
    return {"removed": label}


@router.post("/admin/keys/{label}/enable")
async def enable_credential(
    label: str,
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    try:
        record = await admin.set_enabled(label, True)
    except Exception as e:
        return map_gateway_error(e, "enable_credential")
    return {"label": record.label, "enabled": record.enabled}


@router.post("/admin/keys/{label}/disable")
async def disable_credential(
    label: str,
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    try:
        record = await admin.set_enabled(label, False)
    except Exception as e:
        return map_gateway_error(e, "disable_credential")
    return {"label": record.label, "enabled": record.enabled}


@router.post("/admin/keys/{label}/refresh", response_model=RefreshResult)
async def refresh_credential(
    label: str,
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    try:
        report = await admin.refresh(label)
    except Exception as e:
        return map_gateway_error(e, "refresh_credential")
    return report.to_dict()


@router.post("/admin/keys/{label}/rename")
async def rename_credential(
    label: str,
    body: RenameCredentialRequest,
    admin: CredentialAdmin = Depends(get_credential_admin),
    _=Depends(verify_admin_key),
):
    try:
        record = await admin.rename(label, body.new_label)
    except Exception as e:
        return map_gateway_error(e, "rename_credential")
    return {"old_label": label, "label": record.label}


@router.get("/debug/version", response_model=VersionInfo)
async def debug_version():
    return {"version": __version__, "features": FEATURES, "models": list(MODEL_MAP)}
