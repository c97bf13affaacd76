"""Transaction intake and query schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.transaction import TxStatus
from app.chains import get_chain


class TransactionCreate(BaseModel):
    """Schema for submitting a contract call."""
    chain_id: str = Field(..., alias="chainId", min_length=1)
    contract_address: str = Field(..., alias="contractAddress", min_length=1)
    method: str = Field(..., min_length=1)
    args: List[str] = Field(..., min_length=1)
    user_address: str = Field(..., alias="userAddress", min_length=1)

    @field_validator("chain_id")
    @classmethod
    def validate_chain(cls, v: str) -> str:
        """Only chains the relay knows about are accepted."""
        if get_chain(v) is None:
            raise ValueError(f"Unsupported chainId {v}")
        return v.lower()

    @field_validator("args")
    @classmethod
    def validate_args(cls, v: List[str]) -> List[str]:
        if any(not isinstance(arg, str) for arg in v):
            raise ValueError("args must be strings")
        return v

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "chainId": "0xaa36a7",
                "contractAddress": "0x742d35Cc6634C0532925a3b844Bc9e7595f2bD20",
                "method": "transfer",
                "args": ["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD20", "1000000000000000000"],
                "userAddress": "0x1111111111111111111111111111111111111111",
            }
        }


class TransactionResponse(BaseModel):
    """Schema for a transaction record."""
    id: str
    user_address: str = Field(..., alias="userAddress")
    chain_id: str = Field(..., alias="chainId")
    contract_address: str = Field(..., alias="contractAddress")
    method: str
    args: List[str]
    tx_hash: Optional[str] = Field(None, alias="txHash")
    block_number: Optional[int] = Field(None, alias="blockNumber")
    nonce: Optional[int] = None
    status: TxStatus
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        from_attributes = True
        populate_by_name = True
