from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, StrictFloat, StrictInt
from typing import Optional, Union

class Entitlements(BaseModel):
    plan: str
    can_use: bool
    remaining: int
    limit: int
    credits_balance: int
    daily_credits_used: int
    daily_limit: int
    subscription_status: Optional[str] = None
    current_period_end: Optional[datetime] = None
    subscription_expired: bool = False

class ConsumeRequest(BaseModel):
    count: Union[StrictInt, StrictFloat] = 1
    reason: Optional[str] = None

class ClaimRequest(BaseModel):
    txid: Optional[str] = None

class ClaimResponse(BaseModel):
    ok: bool = True
    paid: bool
    processed: Optional[bool] = None
    reason: Optional[str] = None
    txid: Optional[str] = None

class DepositAddressOut(BaseModel):
    ok: bool = True
    address: str
    chain: str
    token: str = "USDT"
    price_usdt: Decimal
    credits: int
