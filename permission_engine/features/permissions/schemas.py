"""
Pydantic schemas for permission management.

Request and response models for the catalog, roles, the role matrix,
permission checks and sessions.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from permission_engine.features.permissions.feature_access import AccessLevel
from permission_engine.features.permissions.guard import RequirementMode
from permission_engine.features.permissions.matrix import ColumnState, EditorMode


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    resource: str = Field(..., min_length=1, max_length=100, description="Resource (e.g., 'document', 'reports')")
    action: str = Field(..., min_length=1, max_length=50, description="Action (e.g., 'read', 'manage', 'sync')")
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""
    name: Optional[str] = Field(None, max_length=100, description="Display name, defaults to 'resource:action'")

    @field_validator('action')
    @classmethod
    def action_lowercase(cls, v: str) -> str:
        """Ensure action is lowercase."""
        return v.strip().lower()


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: int
    name: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResourceResponse(BaseModel):
    resource: str
    actions: List[str]


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(BaseModel):
    """
    Schema for creating a new role.

    Name, description and level rules are enforced by the role store so
    they report the same errors for every caller.
    """
    name: str = Field(..., description="Unique role name (2-50 characters)")
    description: Optional[str] = Field(None, description="Role description (max 200 characters)")
    level: int = Field(50, description="Authority level, 0-100")
    permission_ids: List[int] = Field(default_factory=list, description="Catalog permission ids")


class RoleUpdate(BaseModel):
    """Schema for updating a role. Omitted fields are left unchanged."""
    name: Optional[str] = None
    description: Optional[str] = None
    level: Optional[int] = None
    permission_ids: Optional[List[int]] = None


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: int
    name: str
    description: Optional[str] = None
    level: int
    is_system_role: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[PermissionResponse] = []

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Matrix Schemas
# ============================================================================

class MatrixAction(BaseModel):
    id: int
    action: str


class MatrixEntry(BaseModel):
    """One resource of the persistence payload."""
    resource: str
    actions: List[MatrixAction]


class MatrixColumn(BaseModel):
    action: str
    state: ColumnState


class MatrixRow(BaseModel):
    resource: str
    state: ColumnState
    # action -> permission id, for available cells only
    available: Dict[str, int]
    selected: List[str]


class MatrixResponse(BaseModel):
    columns: List[MatrixColumn]
    rows: List[MatrixRow]
    selected_count: int
    available_count: int
    errors: Dict[str, str] = {}
    global_error: Optional[str] = None


class RoleMatrixUpdate(BaseModel):
    """Persist a matrix selection as the role's permission set."""
    permissions: List[MatrixEntry]


class AccessLevelPresetRequest(BaseModel):
    preset: str = Field(..., description="One of User, Manager, Admin, Super Admin")
    mode: EditorMode = EditorMode.EDIT
    permissions: List[MatrixEntry] = Field(default_factory=list, description="Current editor selection")


class AccessLevelPresetResponse(BaseModel):
    level: int
    permissions: List[MatrixEntry]


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking permissions."""
    resource: Optional[str] = Field(None, description="Resource")
    action: Optional[str] = Field(None, description="Action")
    permissions: List[str] = Field(default_factory=list, description="'resource:action' strings, checked with mode")
    mode: RequirementMode = RequirementMode.ANY


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    allowed: bool
    reason: Optional[str] = None
    required_permission: Optional[str] = None


# ============================================================================
# Session Schemas
# ============================================================================

class ResolvedPermissionResponse(BaseModel):
    resource: str
    action: str
    permission_id: Optional[int] = None
    name: Optional[str] = None
    source: str

    model_config = ConfigDict(from_attributes=True)


class FeatureAccessResponse(BaseModel):
    feature: str
    access_level: AccessLevel
    actions: List[str]

    model_config = ConfigDict(from_attributes=True)


class SessionRoleResponse(BaseModel):
    id: int
    name: str
    level: int

    model_config = ConfigDict(from_attributes=True)


class SessionUserResponse(BaseModel):
    id: str
    email: str
    display_name: str
    status: str
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    roles: List[SessionRoleResponse] = []

    model_config = ConfigDict(from_attributes=True)


class SessionResponse(BaseModel):
    session_id: str
    expires_at: datetime
    user: SessionUserResponse
    permissions: List[ResolvedPermissionResponse]
    features: Dict[str, FeatureAccessResponse]

    model_config = ConfigDict(from_attributes=True)
