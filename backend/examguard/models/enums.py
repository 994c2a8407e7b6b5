import enum


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FLAGGED = "FLAGGED"
    FAILED = "FAILED"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ViolationType(str, enum.Enum):
    TAB_SWITCH = "TAB_SWITCH"
    WINDOW_FOCUS_LOSS = "WINDOW_FOCUS_LOSS"
    FULLSCREEN_EXIT = "FULLSCREEN_EXIT"
    MOUSE_LEFT_WINDOW = "MOUSE_LEFT_WINDOW"
    RIGHT_CLICK = "RIGHT_CLICK"
    COPY_PASTE = "COPY_PASTE"
    SUSPICIOUS_KEYBOARD = "SUSPICIOUS_KEYBOARD"
    DEVELOPER_TOOLS = "DEVELOPER_TOOLS"


# Incident types that are not produced by a single client report
SUSPICIOUS_BEHAVIOR = "SUSPICIOUS_BEHAVIOR"
TIME_LIMIT_EXCEEDED = "TIME_LIMIT_EXCEEDED"
