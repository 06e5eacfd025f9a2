from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from botdesk.core.middleware import get_current_account
from botdesk.core.database import get_db
from botdesk.services.credential_service import CredentialService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


class CredentialCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)  # Allows both api_key and apiKey

    exchange: str
    api_key: str = Field(..., alias="apiKey")
    api_secret: str = Field(..., alias="apiSecret")


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
def add_credential(
    body: CredentialCreate,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """Store an exchange API key pair, encrypted at rest"""
    logger.info(f"add_credential: Entry - user: {current_user['uid']}, exchange: {body.exchange}")
    service = CredentialService()
    credential = service.add_credential(
        db,
        current_user['uid'],
        body.exchange,
        body.api_key,
        body.api_secret
    )
    return {"success": True, "credential": service.to_dict(credential)}


@router.get("")
@router.get("/", include_in_schema=False)
def list_credentials(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    return CredentialService().list_credentials(db, current_user['uid'], page=page, limit=limit)


@router.get("/{credential_id}/usage")
def get_credential_usage(
    credential_id: str,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """Bots using the credential and whether it can be deleted"""
    return CredentialService().get_usage(db, current_user['uid'], credential_id)


@router.delete("/{credential_id}")
def delete_credential(
    credential_id: str,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    logger.info(f"delete_credential: Entry - user: {current_user['uid']}, credential: {credential_id}")
    CredentialService().delete_credential(db, current_user['uid'], credential_id)
    return {"success": True}
