# Scheduling platform constants

# Time formats
TIME_FORMAT_24H = "%H:%M"  # Example: 14:30

# Buffer constants
MIN_BUFFER_MINUTES = 0
MAX_BUFFER_MINUTES = 120  # minutes (2 hours)
DEFAULT_BUFFER_TIME = 0  # minutes

# Appointment statuses that occupy a timeline
ACTIVE_APPOINTMENT_STATUSES = ["scheduled", "confirmed", "in_progress"]

# Weekday names, indexed by datetime.weekday()
WEEKDAY_NAMES = [
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
]

# Blocked time categories
BLOCK_TYPES = ["break", "meeting", "training", "personal", "other"]

# Lock defaults (seconds)
DEFAULT_LOCK_EXPIRES = 30
DEFAULT_LOCK_TIMEOUT = 5
DEFAULT_LOCK_POLL_INTERVAL = 0.05
