"""
Hierarchy models for the permission inheritance engine.

This module defines data models for catalog permissions, roles, hierarchy
levels and the per-tenant role hierarchy.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rbac_hierarchy.utils.helpers import utc_now


class RiskLevel(str, Enum):
    """Permission risk levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PermissionLevel(str, Enum):
    """Permission criticality levels."""
    BASIC = "basic"
    ADVANCED = "advanced"
    CRITICAL = "critical"


class Permission(BaseModel):
    """Immutable catalog permission entry."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique permission identifier")
    module: str = Field(..., description="Owning module (e.g. crm, accounts)")
    resource: str = Field(..., description="Resource type the permission applies to")
    action: str = Field(..., description="Action allowed on the resource")
    name: str = Field(default="", description="Human readable name")
    description: str = Field(default="", description="Permission description")
    risk_level: RiskLevel = Field(default=RiskLevel.LOW, description="Risk classification")
    level: PermissionLevel = Field(default=PermissionLevel.BASIC, description="Criticality level")
    compliance_tags: List[str] = Field(default_factory=list, description="Compliance frameworks the permission is tagged with")

    @property
    def key(self) -> str:
        """module:resource:action key."""
        return f"{self.module}:{self.resource}:{self.action}"


class Role(BaseModel):
    """Role record owned by the hierarchy store."""
    id: str = Field(..., description="Unique role identifier")
    name: str = Field(..., description="Role name")
    tenant_id: Optional[str] = Field(default=None, description="Owning tenant")
    description: str = Field(default="", description="Role description")
    level: int = Field(..., ge=1, description="Authority rank (lower = more senior)")
    parent_role_id: Optional[str] = Field(default=None, description="Single parent role")
    direct_permissions: Set[str] = Field(default_factory=set, description="Directly granted permission ids")
    inheritance_enabled: bool = Field(default=True, description="Whether the role inherits from ancestors")
    is_system: bool = Field(default=False, description="System roles cannot be removed")
    created_at: datetime = Field(default_factory=utc_now, description="Role creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Role last update timestamp")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v):
        """Role ids are embedded in colon separated conflict ids."""
        if ":" in v:
            raise ValueError("Role id cannot contain ':'")
        return v

    @field_validator("parent_role_id")
    @classmethod
    def validate_parent(cls, v, info):
        """A role cannot be its own parent."""
        if v is not None and v == info.data.get("id"):
            raise ValueError("A role cannot be its own parent")
        return v


class HierarchyLevel(BaseModel):
    """One authority level of a role hierarchy."""
    level: int = Field(..., ge=1, description="Level number (lower = more senior)")
    name: str = Field(..., description="Level name")
    description: str = Field(default="", description="Level description")
    can_inherit_from: Set[int] = Field(default_factory=set, description="Levels whose roles may be inherited from")
    can_delegate_to: Set[int] = Field(default_factory=set, description="Levels this level may delegate to")
    roles: Set[str] = Field(default_factory=set, description="Roles placed on this level")
    default_permissions: Set[str] = Field(default_factory=set, description="Permissions granted to every role on the level")
    max_critical_permissions: Optional[int] = Field(
        default=None, ge=0, description="Escalation ceiling override for roles on this level"
    )


class RoleHierarchy(BaseModel):
    """Per-tenant role hierarchy."""
    id: str = Field(..., description="Hierarchy identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    name: str = Field(..., description="Hierarchy name")
    description: str = Field(default="", description="Hierarchy description")
    levels: List[HierarchyLevel] = Field(default_factory=list, description="Levels ordered from most senior")
    is_active: bool = Field(default=True, description="Whether the hierarchy is active")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update timestamp")

    def get_level(self, level: int) -> Optional[HierarchyLevel]:
        """Get a level definition by number."""
        for item in self.levels:
            if item.level == level:
                return item
        return None

    def level_of_role(self, role_id: str) -> Optional[HierarchyLevel]:
        """Get the level that lists a role."""
        for item in self.levels:
            if role_id in item.roles:
                return item
        return None

    def level_numbers(self) -> List[int]:
        """Level numbers from most to least senior."""
        return sorted(item.level for item in self.levels)


class HierarchySpec(BaseModel):
    """Input for creating a role hierarchy."""
    tenant_id: str = Field(..., description="Owning tenant")
    name: str = Field(..., min_length=1, description="Hierarchy name")
    description: str = Field(default="", description="Hierarchy description")
    levels: List[HierarchyLevel] = Field(
        default_factory=list, description="Level definitions; empty uses the default template"
    )
    roles: List[Role] = Field(
        default_factory=list, description="Role records in addition to the catalog ones"
    )
    is_active: bool = Field(default=True, description="Whether the hierarchy is active")


class HierarchyPatch(BaseModel):
    """Partial update of a role hierarchy."""
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    levels: Optional[List[HierarchyLevel]] = None


def default_hierarchy_levels(depth: int = 5) -> List[HierarchyLevel]:
    """
    Build the default level template.

    Level n inherits from every more senior level and delegates to every
    more junior one.

    Args:
        depth: Number of levels to generate (at most five are named)

    Returns:
        List of hierarchy levels
    """
    names: Dict[int, str] = {
        1: "Super Admin",
        2: "Admin",
        3: "Manager",
        4: "User",
        5: "Viewer",
    }
    return [
        HierarchyLevel(
            level=number,
            name=names.get(number, f"Level {number}"),
            can_inherit_from=set(range(1, number)),
            can_delegate_to=set(range(number + 1, depth + 1)),
        )
        for number in range(1, depth + 1)
    ]
