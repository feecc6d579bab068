from typing import List

from pydantic import BaseModel, ConfigDict, Field


class SpinRequest(BaseModel):
    """Categories are validated by the spin service so errors can name them."""
    model_config = ConfigDict(populate_by_name=True)

    categories: List[str] = Field(default_factory=list)
    exclude_completed: bool = Field(default=True, alias="excludeCompleted")


class CompleteSpinRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    spin_result_id: int = Field(..., gt=0, alias="spinResultId")
