from enum import Enum
from typing import Iterable


class Role(str, Enum):
    ADMIN = "admin"
    REVIEWER = "reviewer"
    APPLICANT = "applicant"


ROLE_HIERARCHY = {
    Role.ADMIN: {Role.ADMIN, Role.REVIEWER, Role.APPLICANT},
    Role.REVIEWER: {Role.REVIEWER, Role.APPLICANT},
    Role.APPLICANT: {Role.APPLICANT},
}


def has_required_role(user_roles: Iterable[Role], required: Iterable[Role]) -> bool:
    granted: set[Role] = set()
    for role in user_roles:
        granted |= ROLE_HIERARCHY.get(Role(role), set())
    required_set = {Role(r) for r in required}
    return bool(granted & required_set)
