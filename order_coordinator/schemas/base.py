"""Base schemas shared by request and response models."""
from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema that can be built from coordinator records."""
    model_config = ConfigDict(from_attributes=True)
