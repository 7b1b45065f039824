"""Focus session analytics: event store, period rollups, retention and live queries."""

from .errors import FocusStatsError, IntegrityError, NotFoundError, RefreshCancelled, RetentionError
from .models import AppUsage, DailyMobileUsage, DailyStats, MonthlyStats, Schedule, Session, WeeklyStats
from .service import FocusService
from .storage import FocusStorage

__version__ = "0.1.0"
