from __future__ import annotations

from pydantic import BaseModel
from pydantic import ConfigDict


class Decision(BaseModel):
    """
    Attributes:
        success: True if the mutation or query succeeds.
        reason: If success=False, explains why.
        amount: If the action is hypothetical, how much can it be done?

    Note that this object's truthiness is tied to its success attribute.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = False
    reason: str | None = None
    amount: int | None = None

    def __bool__(self) -> bool:
        return self.success

