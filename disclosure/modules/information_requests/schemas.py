from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field, computed_field
from disclosure.modules.information_requests.fields import denormalize_field, is_sensitive

class InformationRequestCreate(BaseModel):
    target_id: str = Field(..., min_length=1, max_length=64)
    requested_fields: list[str] = Field(..., min_length=1)
    reason: str | None = Field(default=None, max_length=1000)
    expires_at: datetime | None = None

class InformationRequestRespond(BaseModel):
    approved: bool
    shared_fields: list[str] = []
    expires_at: datetime | None = None

class InformationRequestOut(BaseModel):
    id: str
    requester_id: str
    target_id: str
    status: str
    requested_fields: list[str]
    shared_fields: list[str]
    reason: str | None
    expires_at: datetime | None
    responded_at: datetime | None
    revoked_at: datetime | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class PermissionGrantOut(BaseModel):
    id: str
    request_id: str
    viewer_id: str
    target_id: str
    field: str
    expires_at: datetime | None
    created_at: datetime

    @computed_field
    @property
    def field_camel(self) -> str:
        return denormalize_field(self.field)

    @computed_field
    @property
    def sensitive(self) -> bool:
        return is_sensitive(self.field)

    class Config:
        from_attributes = True

class EffectivePermissionSet(BaseModel):
    target_id: str
    viewer_id: str
    permissions: list[str] = []
    permissions_camel: list[str] = []
    sensitive_fields: list[str] = []
    entries: list[PermissionGrantOut] = []
    earliest_expiry: datetime | None = None

    def allows(self, field: str) -> bool:
        return field in self.permissions

class DocumentOut(BaseModel):
    id: str | None = None
    type: str | None = None
    label: str = "Document"
    file_name: str | None = None
    url: str | None = None
    verified: bool = False
    uploaded_at: datetime | None = None
    metadata: dict[str, Any] | None = None

class SharedProfileOut(BaseModel):
    target_id: str
    viewer_id: str
    shared: dict[str, Any] = {}
    documents: list[DocumentOut] = []
    media: list[DocumentOut] = []
    permissions: EffectivePermissionSet
