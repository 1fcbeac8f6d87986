"""
Error codes shared by every GraphQL response besides the business ones in app.core.errors
"""
FORBIDDEN = "FORBIDDEN"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
INTERNAL_ERROR = "INTERNAL_ERROR"

FORBIDDEN_MESSAGE = "Not allowed to act on another member"
INTERNAL_ERROR_MESSAGE = "Unexpected error, please try again"
