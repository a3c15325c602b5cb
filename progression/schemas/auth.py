"""Auth schemas."""

import uuid

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Identity extracted from a verified bearer token."""

    user_id: uuid.UUID
