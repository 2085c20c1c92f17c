from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.asset_models import BorrowingAction, IssueType, ServiceStatus


class BorrowRequestDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    employeeID: Optional[int] = None
    assetID: int


class BorrowingActionDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: BorrowingAction


class AuditSendDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    employeeID: int
    assetID: int


class AuditDecisionDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Plain string: ownership is checked before the action is parsed.
    action: str


class ServiceRequestCreateDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    employeeID: Optional[int] = None
    assetID: int
    issueType: IssueType
    description: str = Field(min_length=1, max_length=1000)


class ServiceStatusUpdateDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: ServiceStatus
