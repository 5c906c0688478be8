from enum import Enum
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class OrgRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"

class GroupRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"
    GUEST = "guest"

class DirectMessageType(str, Enum):
    TEXT = "text"
    FILE = "file"

class GroupMessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"

# Server-side clamp for every paginated message read
MAX_PAGE_SIZE = 50

class Pagination(CamelModel):
    page: int
    limit: int
    has_more: bool
