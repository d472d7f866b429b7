from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenSubmission(BaseModel):
    """
    Body posted by the captcha web app.
    """
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    token: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")


class TokenResult(BaseModel):
    success: bool
