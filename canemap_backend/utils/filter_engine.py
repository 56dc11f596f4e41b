"""
FilterEngine - pure filtering of the cached record list.

apply_filter(records, state) never mutates its inputs and always returns
the same view for the same (records, state, now).
"""
from datetime import datetime, timedelta
import math

from canemap_backend.utils.cost_classifier import CostClassifier, FUEL, LABOR, OTHER
from canemap_backend.utils.record_dates import record_date, to_datetime

ALL = 'all'
DATE_MODES = (ALL, 'today', 'week', 'month', 'custom')
COST_CATEGORIES = (ALL, FUEL, LABOR, OTHER)

# Rolling windows, inclusive of the first day
WINDOW_DAYS = {
    'week': 7,
    'month': 30,
}


def _parse_number(value, default):
    if value is None or value == '':
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(number) else number


def _selection(value):
    """Dropdown-style selection: empty or 'all' means no filter"""
    if value is None:
        return None
    value = str(value).strip()
    return None if value in ('', ALL) else value


def _bound(value, name):
    if value is None or value == '':
        return None
    parsed = to_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid {name} date '{value}'")
    return parsed


class FilterState:
    """Consumer-held filter selection"""

    def __init__(self, date_mode=ALL, start=None, end=None, field_id=None,
                 operation=None, task_type=None, cost_category=ALL,
                 cost_min=0.0, cost_max=math.inf):
        if date_mode not in DATE_MODES:
            raise ValueError(f"Unknown date filter '{date_mode}'")
        if cost_category not in COST_CATEGORIES:
            raise ValueError(f"Unknown cost category '{cost_category}'")

        self.date_mode = date_mode
        self.start = _bound(start, 'start')
        self.end = _bound(end, 'end')
        self.field_id = _selection(field_id)
        self.operation = _selection(operation)
        self.task_type = _selection(task_type)
        self.cost_category = cost_category
        self.cost_min = cost_min
        self.cost_max = cost_max

    @classmethod
    def from_args(cls, args):
        """Build from request query args (all values are strings)"""
        return cls(
            date_mode=(args.get('date') or ALL).strip().lower(),
            start=args.get('start') or None,
            end=args.get('end') or None,
            field_id=args.get('field'),
            operation=args.get('operation'),
            task_type=args.get('task_type'),
            cost_category=(args.get('cost_category') or ALL).strip().lower(),
            cost_min=_parse_number(args.get('cost_min'), 0.0),
            cost_max=_parse_number(args.get('cost_max'), math.inf),
        )

    def to_dict(self):
        return {
            'date': self.date_mode,
            'start': self.start.date().isoformat() if self.start else None,
            'end': self.end.date().isoformat() if self.end else None,
            'field': self.field_id or ALL,
            'operation': self.operation or ALL,
            'task_type': self.task_type or ALL,
            'cost_category': self.cost_category,
            'cost_min': self.cost_min,
            'cost_max': None if math.isinf(self.cost_max) else self.cost_max,
        }

    def uses_costs(self):
        return (self.cost_category != ALL or self.cost_min > 0
                or not math.isinf(self.cost_max))


def _day(value):
    return datetime(value.year, value.month, value.day)


def date_predicate(state, now):
    """Return a predicate over records for the date window, or None for no filter"""
    today = _day(now)

    if state.date_mode == 'today':
        return lambda when: _day(when) == today

    if state.date_mode in WINDOW_DAYS:
        window_start = today - timedelta(days=WINDOW_DAYS[state.date_mode])
        return lambda when: _day(when) >= window_start

    if state.date_mode == 'custom':
        start = _day(state.start) if state.start else None
        end = _day(state.end) + timedelta(days=1) if state.end else None
        if start is None and end is None:
            return None
        return lambda when: ((start is None or when >= start)
                             and (end is None or when < end))

    return None


def apply_filter(records, state, now=None, classifier=None):
    """
    Apply every active predicate (logical AND) and return a new list.

    A record without any date is treated as dated ``now``.
    """
    now = now or datetime.utcnow()
    classifier = classifier or CostClassifier()

    in_window = date_predicate(state, now)

    view = []
    for record in records:
        if in_window is not None and not in_window(record_date(record) or now):
            continue
        if state.field_id is not None and record.get('fieldId') != state.field_id:
            continue
        if state.operation is not None and record.get('operation') != state.operation:
            continue
        if state.task_type is not None and record.get('taskType') != state.task_type:
            continue

        if state.uses_costs():
            breakdown = classifier.classify(record)
            if state.cost_category != ALL and breakdown.amount_for(state.cost_category) <= 0:
                continue
            total = breakdown.grand_total
            if state.cost_min > 0 and total < state.cost_min:
                continue
            if not math.isinf(state.cost_max) and total > state.cost_max:
                continue

        view.append(record)

    return view
