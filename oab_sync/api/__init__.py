"""
oab_sync.api - Google People API access
"""

from oab_sync.api.people_api import PeopleAPI, PeopleAPIError, RateLimitError

__all__ = ["PeopleAPI", "PeopleAPIError", "RateLimitError"]
