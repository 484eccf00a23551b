from enum import Enum


class UserRole(str, Enum):
    ROLE_CLIENT = "ROLE_CLIENT"
    ROLE_CLIENT_ADMIN = "ROLE_CLIENT_ADMIN"
    ROLE_ADMIN = "ROLE_ADMIN"
