# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Branch Directory - static mapping between workforce location ids,
scheduling branch codes and branch timezones
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

STATE_TIMEZONES = {
    'NSW': 'Australia/Sydney',
    'VIC': 'Australia/Melbourne',
    'QLD': 'Australia/Brisbane',
}
DEFAULT_TIMEZONE = 'Australia/Sydney'


@dataclass(frozen=True)
class Branch:
    location_id: int
    code: str
    name: str
    state: str

    @property
    def timezone(self) -> str:
        return STATE_TIMEZONES.get(self.state, DEFAULT_TIMEZONE)


BRANCHES = (
    Branch(location_id=148390, code='BKT', name='Blacktown', state='NSW'),
    Branch(location_id=148391, code='BON', name='Bondi Junction', state='NSW'),
    Branch(location_id=148392, code='CHT', name='Chatswood', state='NSW'),
    Branch(location_id=148393, code='PAR', name='Parramatta', state='NSW'),
    Branch(location_id=148394, code='BOX', name='Box Hill', state='VIC'),
    Branch(location_id=148395, code='DON', name='Doncaster', state='VIC'),
    Branch(location_id=148396, code='CHD', name='Chadstone', state='VIC'),
    Branch(location_id=148397, code='SUN', name='Sunnybank', state='QLD'),
    Branch(location_id=148398, code='CHR', name='Chermside', state='QLD'),
)


class BranchDirectory:
    """Read-only lookup over a fixed set of branches"""

    def __init__(self, branches: Iterable[Branch] = BRANCHES):
        self._branches: List[Branch] = list(branches)
        self._by_location: Dict[int, Branch] = {b.location_id: b for b in self._branches}
        self._by_code: Dict[str, Branch] = {b.code: b for b in self._branches}

    def by_location(self, location_id) -> Optional[Branch]:
        try:
            return self._by_location.get(int(location_id))
        except (TypeError, ValueError):
            return None

    def by_code(self, code: str) -> Optional[Branch]:
        return self._by_code.get(code)

    def codes(self) -> List[str]:
        return [b.code for b in self._branches]

    def location_ids(self) -> List[int]:
        return [b.location_id for b in self._branches]

    def timezone_for(self, code: str) -> str:
        """Timezone of a branch code; unknown codes fall back to Sydney"""
        branch = self.by_code(code)
        return branch.timezone if branch else DEFAULT_TIMEZONE
