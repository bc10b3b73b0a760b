# models.py
# Pydantic models shared by the API and the storage rows

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .config import DEFAULT_CURRENCY


class UserRole(str, Enum):
    SYS_ADMIN = "system_admin"
    BUYER = "buyer"    # 甲方
    VENDOR = "vendor"  # 乙方


class RFQStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    AWARDED = "awarded"


# --- users ---

class UserPublic(BaseModel):
    id: str
    name: str
    role: UserRole
    company: Optional[str] = None
    created_at: str


class User(UserPublic):
    # kept as entered; there is no hashing
    password: Optional[str] = None


class LoginRequest(BaseModel):
    id: str
    password: str


class RegisterRequest(BaseModel):
    id: str = ""
    password: str = ""
    name: str = ""
    company: Optional[str] = None
    role: UserRole = UserRole.VENDOR


class UserCreate(RegisterRequest):
    pass


class PasswordReset(BaseModel):
    password: str


class SessionResponse(BaseModel):
    token: str
    user: UserPublic


# --- RFQs ---

class RFQItemCreate(BaseModel):
    id: Optional[str] = None
    name: str
    quantity: float = Field(gt=0)
    unit: str = "pcs"


class RFQItem(BaseModel):
    id: str
    name: str
    quantity: float
    unit: str = "pcs"


class RFQCreate(BaseModel):
    title: str
    description: str = ""
    deadline: Optional[date] = None
    budget: Optional[float] = None
    status: RFQStatus = RFQStatus.OPEN
    items: List[RFQItemCreate] = []


class RFQ(BaseModel):
    id: str
    title: str
    description: str = ""
    deadline: str
    budget: Optional[float] = None
    status: RFQStatus = RFQStatus.OPEN
    created_at: str
    creator_id: str
    items: List[RFQItem] = []


# --- bids ---

class ItemQuote(BaseModel):
    item_id: str
    unit_price: float


class BidSubmit(BaseModel):
    amount: Optional[float] = None
    currency: str = DEFAULT_CURRENCY
    delivery_date: Optional[str] = None
    notes: str = ""
    item_quotes: List[ItemQuote] = []


class Bid(BaseModel):
    id: str
    rfq_id: str
    vendor_id: str
    vendor_name: str
    amount: float
    currency: str = DEFAULT_CURRENCY
    delivery_date: Optional[str] = None
    notes: str = ""
    timestamp: str
    item_quotes: List[ItemQuote] = []


class BidBoard(BaseModel):
    rfq: RFQ
    bids: List[Bid] = []
    lowest: Optional[Bid] = None
    my_bid: Optional[Bid] = None


class Analysis(BaseModel):
    rfq_id: str
    summary: str


# --- runtime settings ---

class CloudConfig(BaseModel):
    url: str = ""
    # None keeps the saved key
    key: Optional[str] = None


class CloudStatus(BaseModel):
    url: str = ""
    key_set: bool = False
    mode: str = "local"


class ChangeNotice(BaseModel):
    revision: int
    tables: List[str] = []
