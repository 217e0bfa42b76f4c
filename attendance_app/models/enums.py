# attendance_app/models/enums.py

import enum


class MemberStatus(str, enum.Enum):
    """Lifecycle status for an enrolled member"""

    ACTIVE = "active"
    INACTIVE = "inactive"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"


class LeaveStatus(str, enum.Enum):
    """Lifecycle status for a leave (exeat) record"""

    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


class GatheringCategory(str, enum.Enum):
    """Kind of scheduled gathering"""

    SUNDAY_SERVICE = "sunday_service"
    MIDWEEK_SERVICE = "midweek_service"
    DEVOTION = "devotion"
    SPECIAL = "special"
