# sales_rollup/services/week_service.py
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from sales_rollup.core.types import Week
from sales_rollup.exceptions import InvalidWeekError, NotFoundError
from sales_rollup.models import WeekMetadata
from sales_rollup.utils.date_utils import WeekCalendar, parse_week_range

logger = logging.getLogger(__name__)

class WeekService:
    """Service for accepting and reading reporting weeks."""

    def __init__(self, session: Session):
        """Initialize the week service.

        Args:
            session: Database session
        """
        self.session = session

    def accept_week(self, start_date, end_date, week_id: Optional[str] = None) -> WeekMetadata:
        """Store a new reporting week.

        Raises:
            InvalidWeekError: for an unparseable date, end_date <= start_date, or
                a range that overlaps a stored week
        """
        start_date, end_date = parse_week_range(start_date, end_date, week_id)

        overlapping = self.session.query(WeekMetadata).filter(
            WeekMetadata.start_date < end_date,
            WeekMetadata.end_date > start_date
        ).first()
        if overlapping:
            raise InvalidWeekError(
                f"Week {start_date} - {end_date} overlaps week {overlapping.id}",
                details={'week_id': week_id, 'overlaps': overlapping.id,
                         'start_date': str(start_date), 'end_date': str(end_date)}
            )

        week = WeekMetadata(start_date=start_date, end_date=end_date)
        if week_id is not None:
            week.id = week_id
        self.session.add(week)
        self.session.flush()

        logger.info(f"Accepted week {week.id} ({start_date} - {end_date})")
        return week

    def get_week(self, week_id: str) -> WeekMetadata:
        week = self.session.query(WeekMetadata).filter(WeekMetadata.id == week_id).first()
        if week is None:
            raise NotFoundError(f"Week {week_id} not found", details={'week_id': week_id})
        return week

    def get_all_weeks(self) -> List[WeekMetadata]:
        return self.session.query(WeekMetadata).order_by(WeekMetadata.start_date).all()

    def latest_week(self) -> Optional[WeekMetadata]:
        return self.session.query(WeekMetadata).order_by(WeekMetadata.start_date.desc()).first()

    def load_calendar(self) -> WeekCalendar:
        """Build an in-memory calendar from every stored week."""
        return WeekCalendar([Week(w.id, w.start_date, w.end_date) for w in self.get_all_weeks()])
