from pydantic import BaseModel
from typing import List, Optional
import datetime


# -------------------
# Organization Schemas
# -------------------

class OrganizationResponse(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    code: Optional[str] = None


# -------------------
# User Schemas
# -------------------

class UserResponse(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    organization_id: Optional[int] = None
    created_at: Optional[datetime.datetime] = None
    organization: Optional[OrganizationResponse] = None


# -------------------
# Permission Schemas
# -------------------

class PermissionResponse(BaseModel):
    # fields[permissions]=... narrows the row, so every column is optional
    id: Optional[int] = None
    name: Optional[str] = None
    guard_name: Optional[str] = None
    module: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None


class CountResponse(BaseModel):
    count: int


class SqlResponse(BaseModel):
    sql: str
    warnings: List[str] = []
