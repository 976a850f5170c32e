from enum import Enum

class Role(str, Enum):
    MASTER_ADMIN = "master_admin"
    ADMIN = "admin"
    COACH = "coach"
    MEMBER = "member"


ADMIN_ROLES = (Role.MASTER_ADMIN, Role.ADMIN)
