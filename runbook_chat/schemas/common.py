from enum import Enum


class UserRole(str, Enum):
    ORG_ADMIN = "org_admin"
    ORG_REP = "org_rep"
    CLIENT_ADMIN = "client_admin"
    CLIENT_MEMBER = "client_member"


class ChannelType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class MembershipRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"
