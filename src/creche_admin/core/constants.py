"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_ARCHIVE_REASON = "Left the nursery"
DEFAULT_ISOLATION_LEVEL = "READ COMMITTED"
MIN_PASSWORD_LENGTH = 6
ARCHIVED_APPLICATION_NOTE = "Child archived before a decision"
# Upper bounds (exclusive, in months) of the babies / toddlers / preschool groups.
AGE_GROUP_MONTHS = (12, 24, 36)
