"""Constants for research routes."""

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

INTERNAL_ERROR_DETAIL = "Research data is inconsistent"
