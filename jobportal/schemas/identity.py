from typing import List, Optional

from pydantic import BaseModel, EmailStr

from jobportal.core.roles import Role


class Identity(BaseModel):
    """What the identity provider hands the pipeline: an opaque id and an email."""

    user_id: Optional[str] = None
    email: Optional[EmailStr] = None
    roles: List[Role] = [Role.APPLICANT]
    full_name: Optional[str] = None
