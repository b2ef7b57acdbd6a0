from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    password: str = Field(repr=False)
    totp_secret: Optional[str] = Field(default=None, repr=False)


# header -> normalized cell value, in column order
ScrapedRow = dict[str, str]
