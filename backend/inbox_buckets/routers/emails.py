"""Stored emails and buckets for one user."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_sync_db
from ..errors import PersistenceError
from ..schemas import BucketCreate, BucketDeleteResponse, BucketResponse, BucketUpdate, EmailResponse
from ..services.email_store import EmailStore

router = APIRouter(prefix="/api/users/{user_id}", tags=["emails"])


@router.get("/emails", response_model=List[EmailResponse])
def list_emails(
    user_id: str,
    limit: int = Query(200, ge=1, le=500),
    db: Session = Depends(get_sync_db),
):
    """Latest stored emails (newest first) with their bucket names."""
    try:
        rows = EmailStore(db).list_emails_with_bucket_names(user_id, limit=limit)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [
        EmailResponse(
            id=rec.id,
            subject=rec.subject,
            sender=rec.sender,
            preview=rec.preview,
            sent_at=rec.sent_at,
            bucket_id=rec.bucket_id,
            bucket_name=bucket_name,
            last_synced_at=rec.last_synced_at,
        )
        for rec, bucket_name in rows
    ]


@router.get("/buckets", response_model=List[BucketResponse])
def list_buckets(user_id: str, db: Session = Depends(get_sync_db)):
    """The user's buckets; the default set is created on first access."""
    try:
        buckets = EmailStore(db).ensure_default_buckets(user_id)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return [BucketResponse(id=b.id, name=b.name, description=b.description) for b in buckets]


@router.post("/buckets", response_model=BucketResponse, status_code=201)
def create_bucket(user_id: str, body: BucketCreate, db: Session = Depends(get_sync_db)):
    """Add a bucket. Names are unique per user."""
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Bucket name must not be blank.")
    store = EmailStore(db)
    try:
        if any(b.name == name for b in store.get_buckets(user_id)):
            raise HTTPException(status_code=409, detail=f"Bucket {name!r} already exists.")
        bucket = store.create_bucket(user_id, name, body.description)
    except PersistenceError as e:
        if isinstance(e.__cause__, IntegrityError):
            raise HTTPException(status_code=409, detail=f"Bucket {name!r} already exists.")
        raise HTTPException(status_code=500, detail=str(e))
    return BucketResponse(id=bucket.id, name=bucket.name, description=bucket.description)


@router.patch("/buckets/{bucket_id}", response_model=BucketResponse)
def update_bucket(user_id: str, bucket_id: str, body: BucketUpdate, db: Session = Depends(get_sync_db)):
    """
    Rename or redescribe a bucket. Existing assignments are kept; reclassify the
    bucket (POST /classify with its id) to apply a changed definition.
    """
    changes = {}
    if "name" in body.model_fields_set:
        name = (body.name or "").strip()
        if not name:
            raise HTTPException(status_code=422, detail="Bucket name must not be blank.")
        changes["name"] = name
    if "description" in body.model_fields_set:
        changes["description"] = body.description
    store = EmailStore(db)
    try:
        if "name" in changes and any(
            b.name == changes["name"] and b.id != bucket_id for b in store.get_buckets(user_id)
        ):
            raise HTTPException(status_code=409, detail=f"Bucket {changes['name']!r} already exists.")
        bucket = store.update_bucket(user_id, bucket_id, **changes)
    except PersistenceError as e:
        if isinstance(e.__cause__, IntegrityError):
            raise HTTPException(status_code=409, detail=f"Bucket {changes.get('name')!r} already exists.")
        raise HTTPException(status_code=500, detail=str(e))
    if bucket is None:
        raise HTTPException(status_code=404, detail="Bucket not found.")
    return BucketResponse(id=bucket.id, name=bucket.name, description=bucket.description)


@router.delete("/buckets/{bucket_id}", response_model=BucketDeleteResponse)
def delete_bucket(user_id: str, bucket_id: str, db: Session = Depends(get_sync_db)):
    """Delete a bucket; its emails go back to unclassified."""
    try:
        unclassified = EmailStore(db).delete_bucket(user_id, bucket_id)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if unclassified is None:
        raise HTTPException(status_code=404, detail="Bucket not found.")
    return BucketDeleteResponse(id=bucket_id, unclassified=unclassified)
