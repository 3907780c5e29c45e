# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Region restriction policies.

The block list must be kept current by the operator; it is not an
authoritative legal reference.
"""

from typing import FrozenSet, Optional

RESTRICTIVE_US_STATES: FrozenSet[str] = frozenset({
    "AL", "AZ", "AR", "FL", "GA", "ID", "IN", "KS", "KY", "LA", "MS", "MO",
    "MT", "NE", "NC", "ND", "OH", "OK", "SC", "SD", "TN", "TX", "UT", "VA",
    "WY",
})


def is_restrictive_us_state(country_iso: Optional[str], subdivision_iso: Optional[str]) -> bool:
    """True if the location is a US state that requires age verification."""
    if country_iso != "US":
        return False
    return subdivision_iso in RESTRICTIVE_US_STATES
