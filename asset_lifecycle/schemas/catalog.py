from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.asset_models import AssetStatus


class CategoryUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    categoryName: str = Field(min_length=1, max_length=50)


class AssetUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetName: str = Field(min_length=1, max_length=60)
    categoryName: str = Field(min_length=1, max_length=50)
    assetModel: str = Field(min_length=1, max_length=50)
    manufacturingDate: date
    expiryDate: date
    assetValue: float = Field(gt=0)
    status: Optional[AssetStatus] = None
    description: Optional[str] = Field(default=None, max_length=2048)
