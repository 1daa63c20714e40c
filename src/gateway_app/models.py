# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Pydantic models for the gateway application.

This module contains the request/response models used by the API endpoints.
The chat-completion body itself is read as raw JSON so unknown fields and
loosely-shaped content survive into translation untouched.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class ModelCard(BaseModel):
    """Basic model card for the static catalog."""
    id: str
    object: str = "model"
    created: int = 0
    owned_by: str = "anthropic"


class ModelList(BaseModel):
    """List of models response."""
    object: str = "list"
    data: List[ModelCard]


class AddCredentialRequest(BaseModel):
    """Request model for adding a credential from a claudeAiOauth export."""
    label: str = Field(min_length=1)
    credentials: Union[str, Dict[str, Any]]
    added_by: Optional[str] = None


class RenameCredentialRequest(BaseModel):
    new_label: str = Field(min_length=1)


class CredentialStatus(BaseModel):
    label: str
    enabled: bool
    expiresAt: Optional[str] = None
    remainingMin: Optional[int] = None
    subscriptionType: str = "unknown"
    useCount: int = 0
    errorCount: int = 0
    lastUsed: Optional[str] = None
    lastRefreshed: Optional[str] = None


class RefreshResult(BaseModel):
    label: str
    success: bool
    expiresAt: Optional[int] = None
    disabled: bool = False
    error: Optional[str] = None


class SweepSummary(BaseModel):
    """Summary of a forced refresh sweep."""
    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0
    disabled: int = 0
    results: List[RefreshResult] = Field(default_factory=list)


class VersionInfo(BaseModel):
    version: str
    features: List[str]
    models: List[str]
