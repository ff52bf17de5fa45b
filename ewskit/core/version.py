"""Exchange protocol versions."""

from enum import Enum
from functools import total_ordering


@total_ordering
class ExchangeVersion(Enum):
    """Server schema versions, oldest first. Members compare by release order."""

    EXCHANGE_2007_SP1 = "Exchange2007_SP1"
    EXCHANGE_2010 = "Exchange2010"
    EXCHANGE_2010_SP1 = "Exchange2010_SP1"
    EXCHANGE_2010_SP2 = "Exchange2010_SP2"
    EXCHANGE_2013 = "Exchange2013"
    EXCHANGE_2013_SP1 = "Exchange2013_SP1"

    @property
    def ordinal(self) -> int:
        return list(ExchangeVersion).index(self)

    def __lt__(self, other):
        if not isinstance(other, ExchangeVersion):
            return NotImplemented
        return self.ordinal < other.ordinal
