# SQLModel table definitions, imported so create_all sees every table.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .user_org import UserOrg  # noqa: F401
from .group import Group  # noqa: F401
from .group_member import GroupMember  # noqa: F401
from .direct_message import DirectMessage  # noqa: F401
from .group_message import GroupMessage, GroupMessageSeen  # noqa: F401
