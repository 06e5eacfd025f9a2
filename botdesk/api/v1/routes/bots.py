from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from botdesk.core.database import get_db
from botdesk.core.middleware import get_current_account
from botdesk.services.bot_service import BotService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


class RiskLimits(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_daily_loss: Optional[float] = Field(None, alias="maxDailyLoss")
    max_position_size: Optional[float] = Field(None, alias="maxPositionSize")
    stop_loss: Optional[float] = Field(None, alias="stopLoss")
    take_profit: Optional[float] = Field(None, alias="takeProfit")

    def as_stored(self) -> dict:
        """Stored risk limits keep the camelCase keys"""
        return self.model_dump(by_alias=True, exclude_none=True)


class BotCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)  # Allows both credential_id and apiKeyRef

    name: str = Field(..., min_length=1)
    exchange: Optional[str] = None
    credential_id: str = Field(..., alias="apiKeyRef")
    strategy: Dict[str, Any]
    paper_trading: Optional[bool] = Field(None, alias="paperTrading")
    paper_balance: Optional[float] = Field(None, alias="paperBalance", gt=0)
    risk_limits: Optional[RiskLimits] = Field(None, alias="riskLimits")


class BotUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    strategy: Optional[Dict[str, Any]] = None
    paper_trading: Optional[bool] = Field(None, alias="paperTrading")
    paper_balance: Optional[float] = Field(None, alias="paperBalance", gt=0)
    risk_limits: Optional[RiskLimits] = Field(None, alias="riskLimits")


class BotCredentialUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    credential_id: str = Field(..., alias="apiKeyRef")


class BotToggle(BaseModel):
    action: Literal['start', 'stop']


class BotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    exchange: str
    credential_id: str
    strategy: Dict[str, Any]
    paper_trading: bool
    paper_balance: float
    risk_limits: Dict[str, Any]
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _service_data(body: BaseModel) -> dict:
    data = body.model_dump(exclude={'risk_limits'})
    if getattr(body, 'risk_limits', None) is not None:
        data['risk_limits'] = body.risk_limits.as_stored()
    return data


@router.post("", status_code=status.HTTP_201_CREATED)
@router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
def create_bot(
    body: BotCreate,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """Create a bot; requires an active subscription with room under the plan limit"""
    logger.info(f"create_bot: Entry - user: {current_user['uid']}, name: {body.name}")
    bot = BotService().create_bot(db, current_user['uid'], _service_data(body))
    return {"bot": BotResponse.model_validate(bot)}


@router.get("")
@router.get("/", include_in_schema=False)
def list_bots(
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    bots = BotService().list_bots(db, current_user['uid'])
    return {"bots": [BotResponse.model_validate(bot) for bot in bots]}


@router.get("/{bot_id}")
def get_bot(
    bot_id: str,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    bot = BotService().get_bot(db, current_user['uid'], bot_id)
    return {"bot": BotResponse.model_validate(bot)}


@router.put("/{bot_id}")
def update_bot(
    bot_id: str,
    body: BotUpdate,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    logger.info(f"update_bot: Entry - user: {current_user['uid']}, bot: {bot_id}")
    bot = BotService().update_bot(db, current_user['uid'], bot_id, _service_data(body))
    return {"bot": BotResponse.model_validate(bot)}


@router.put("/{bot_id}/credential")
def update_bot_credential(
    bot_id: str,
    body: BotCredentialUpdate,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    """Point the bot at another of the caller's exchange credentials"""
    bot = BotService().update_bot_credential(db, current_user['uid'], bot_id, body.credential_id)
    return {"bot": BotResponse.model_validate(bot)}


@router.delete("/{bot_id}")
def delete_bot(
    bot_id: str,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    BotService().delete_bot(db, current_user['uid'], bot_id)
    return {"message": "Bot deleted", "bot_id": bot_id}


@router.post("/{bot_id}/toggle")
def toggle_bot(
    bot_id: str,
    body: BotToggle,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    bot = BotService().toggle_bot(db, current_user['uid'], bot_id, body.action)
    return {"bot": BotResponse.model_validate(bot)}


@router.get("/{bot_id}/performance")
def get_bot_performance(
    bot_id: str,
    current_user: dict = Depends(get_current_account),
    db: Session = Depends(get_db),
):
    return {"performance": BotService().get_performance(db, current_user['uid'], bot_id)}
