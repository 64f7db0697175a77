"""Pydantic schemas for API."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ClassifyEmailIn(BaseModel):
    id: str = Field(min_length=1)
    subject: Optional[str] = None
    sender: Optional[str] = None
    preview: Optional[str] = None


class BucketIn(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: Optional[str] = None


class ClassifyRequest(BaseModel):
    emails: List[ClassifyEmailIn] = Field(min_length=1)
    buckets: List[BucketIn] = Field(min_length=1)


class ClassificationErrorOut(BaseModel):
    ids: List[str]
    reason: str


class ClassifyResponse(BaseModel):
    classifications: Dict[str, str]
    errors: List[ClassificationErrorOut]


class ClassifyRunRequest(BaseModel):
    """Buckets to reclassify in addition to all unclassified emails."""
    bucket_ids: List[str] = Field(default_factory=list)


class ClassifyRunResponse(ClassifyResponse):
    nothing_to_do: bool = False
    warnings: List[str] = Field(default_factory=list)


class SyncResponse(BaseModel):
    new_ids: List[str]
    existing_count: int
    warnings: List[str] = Field(default_factory=list)
    fetch_error: Optional[str] = None
    classification: Optional[ClassifyRunResponse] = None


class BucketResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None

    class Config:
        from_attributes = True


class BucketCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None


class BucketUpdate(BaseModel):
    """Fields left out of the body are not changed; description may be set to null."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None


class BucketDeleteResponse(BaseModel):
    id: str
    unclassified: int


class EmailResponse(BaseModel):
    id: str
    subject: Optional[str] = None
    sender: Optional[str] = None
    preview: Optional[str] = None
    sent_at: Optional[datetime] = None
    bucket_id: Optional[str] = None
    bucket_name: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class RunStatusResponse(BaseModel):
    status: str = "idle"
    message: str = ""
    new: int = 0
    classified: int = 0
    failed: int = 0
    error: Optional[str] = None
