import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, rrule
from sqlmodel import Session, select

from app.core.config import SLOT_STEP_MINUTES
from app.core.errors import MissingConfiguration
from app.models.appointment import Appointment, OCCUPYING_STATUSES
from app.models.business_hours import BusinessHours
from app.models.service import Service
from app.models.time_block import RecurrencePattern, TimeBlock

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]

_FREQ = {
    RecurrencePattern.DAILY.value: DAILY,
    RecurrencePattern.WEEKLY.value: WEEKLY,
    RecurrencePattern.MONTHLY.value: MONTHLY,
}


def _overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Retorna True se [a_start, a_end) sobrepõe [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


def parse_hhmm(value) -> Optional[time]:
    if isinstance(value, time):
        return value
    try:
        hour, minute = str(value).split(":")[:2]
        return time(int(hour), int(minute))
    except (TypeError, ValueError):
        return None


# =========================
# SNAPSHOT DO CALENDÁRIO
# =========================

@dataclass(frozen=True)
class DayHours:
    weekday: int
    is_closed: bool
    intervals: Tuple[Tuple[str, time, time], ...] = ()


@dataclass(frozen=True)
class BlockedPeriod:
    title: str
    start: datetime
    end: datetime
    pattern: str = RecurrencePattern.NONE.value
    until: Optional[datetime] = None

    def occurrences(self, range_start: datetime, range_end: datetime) -> List[Interval]:
        """Ocorrências concretas que intersectam [range_start, range_end)."""
        if self.pattern not in _FREQ:
            if _overlaps(self.start, self.end, range_start, range_end):
                return [(self.start, self.end)]
            return []

        duration = self.end - self.start
        # uma ocorrência que começou antes do range ainda pode invadi-lo
        search_from = max(self.start, range_start - duration)
        search_to = range_end if self.until is None else min(range_end, self.until)
        if search_to < search_from:
            return []

        # dtstart fixa hora/minuto e, no mensal, o dia do mês (meses sem esse dia são pulados)
        rule = rrule(_FREQ[self.pattern], dtstart=self.start, until=search_to)
        found = []
        for occ_start in rule.between(search_from, search_to, inc=True):
            occ_end = occ_start + duration
            if _overlaps(occ_start, occ_end, range_start, range_end):
                found.append((occ_start, occ_end))
        return found


@dataclass(frozen=True)
class CalendarSnapshot:
    """Configuração imutável de expediente e bloqueios usada numa checagem.

    ``hours`` é None quando não existe nenhum expediente cadastrado.
    """

    hours: Optional[Dict[int, DayHours]]
    blocks: Tuple[BlockedPeriod, ...] = field(default_factory=tuple)

    @property
    def has_working_hours(self) -> bool:
        return self.hours is not None


def load_calendar_snapshot(session: Session, range_start: datetime, range_end: datetime) -> CalendarSnapshot:
    rows = session.exec(select(BusinessHours)).all()
    hours = None
    if rows:
        hours = {}
        for row in rows:
            intervals = []
            for item in row.intervals or []:
                start = parse_hhmm(item.get("start"))
                end = parse_hhmm(item.get("end"))
                if start is None or end is None:
                    logger.warning("Intervalo de expediente inválido ignorado (dia %s): %r", row.weekday, item)
                    continue
                intervals.append((item.get("name", ""), start, end))
            hours[row.weekday] = DayHours(row.weekday, row.is_closed, tuple(intervals))

    blocks = session.exec(
        select(TimeBlock).where(
            TimeBlock.is_active == True,  # noqa: E712
            TimeBlock.start_time < range_end,
        )
    ).all()

    periods = []
    for b in blocks:
        pattern = b.recurrence_pattern if b.is_recurring else RecurrencePattern.NONE.value
        if pattern == RecurrencePattern.NONE.value and b.end_time <= range_start:
            continue
        periods.append(BlockedPeriod(b.title, b.start_time, b.end_time, pattern, b.recurrence_end_date))

    return CalendarSnapshot(hours=hours, blocks=tuple(periods))


def find_overlapping(
    session: Session,
    start: datetime,
    end: datetime,
    exclude_id: Optional[int] = None,
) -> List[Appointment]:
    """Agendamentos que ocupam horário (confirmed/arrived) e sobrepõem [start, end)."""
    query = select(Appointment).where(
        Appointment.status.in_(OCCUPYING_STATUSES),
        Appointment.start_time < end,
        Appointment.end_time > start,
    )
    if exclude_id is not None:
        query = query.where(Appointment.id != exclude_id)
    return list(session.exec(query).all())


# =========================
# CHECAGEM
# =========================

@dataclass(frozen=True)
class Availability:
    bookable: bool
    reason: Optional[str] = None


class AvailabilityChecker:
    def __init__(self, session: Session):
        self.session = session

    def is_bookable(self, start: datetime, end: datetime, calendar: CalendarSnapshot) -> bool:
        return self.check(start, end, calendar).bookable

    def check(
        self,
        start: datetime,
        end: datetime,
        calendar: CalendarSnapshot,
        exclude_id: Optional[int] = None,
    ) -> Availability:
        if end <= start:
            return Availability(False, "invalid_range")

        # 1) expediente (falha aberta se não houver configuração)
        try:
            if not self._within_working_hours(start, end, calendar):
                return Availability(False, "outside_working_hours")
        except MissingConfiguration as exc:
            logger.warning("%s: checando apenas bloqueios e sobreposição", exc.message)

        # 2) bloqueios
        for block in calendar.blocks:
            if block.occurrences(start, end):
                return Availability(False, "time_off")

        # 3) outros agendamentos
        if find_overlapping(self.session, start, end, exclude_id=exclude_id):
            return Availability(False, "overlap")

        return Availability(True)

    def _within_working_hours(self, start: datetime, end: datetime, calendar: CalendarSnapshot) -> bool:
        if not calendar.has_working_hours:
            raise MissingConfiguration("Expediente não configurado")

        day = calendar.hours.get(start.weekday())
        if day is None or day.is_closed or not day.intervals:
            return False

        for _name, open_time, close_time in day.intervals:
            open_dt = datetime.combine(start.date(), open_time)
            close_dt = datetime.combine(start.date(), close_time)
            if open_dt <= start and end <= close_dt:
                return True
        return False

    def available_slots(self, service: Service, day: date, step: Optional[timedelta] = None) -> Dict:
        step = step or timedelta(minutes=SLOT_STEP_MINUTES)
        length = timedelta(minutes=service.duration_minutes + service.buffer_minutes)

        day_start = datetime.combine(day, time(0, 0))
        day_end = day_start + timedelta(days=1)
        calendar = load_calendar_snapshot(self.session, day_start, day_end + length)

        windows: Sequence[Interval]
        if calendar.has_working_hours:
            hours = calendar.hours.get(day.weekday())
            if hours is None or hours.is_closed:
                windows = []
            else:
                windows = [
                    (datetime.combine(day, open_time), datetime.combine(day, close_time))
                    for _name, open_time, close_time in hours.intervals
                ]
        else:
            windows = [(day_start, day_end)]

        slots: List[Dict[str, str]] = []
        for window_start, window_end in windows:
            current = window_start
            while current + length <= window_end:
                slot_end = current + length
                if self.check(current, slot_end, calendar).bookable:
                    slots.append({"start": current.isoformat(), "end": slot_end.isoformat()})
                current += step

        return {
            "service_id": service.id,
            "day": day.isoformat(),
            "working_hours_configured": calendar.has_working_hours,
            "is_closed": calendar.has_working_hours and not windows,
            "duration_minutes": service.duration_minutes,
            "buffer_minutes": service.buffer_minutes,
            "slot_step_minutes": int(step.total_seconds() // 60),
            "slots": slots,
        }
