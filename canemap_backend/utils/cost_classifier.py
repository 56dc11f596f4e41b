"""
Cost classification for records with schema-less payloads.

Records, bought items and vehicle updates carry an open-ended set of
numeric fields whose names are chosen by whoever logged them
("fertilizerCost", "tractorRentalFee", "fuel_liters_price", ...). There
is no fixed schema, so keys are bucketed by naming convention: an ordered
list of (predicate, bucket) rules evaluated against the lower-cased key,
first match wins.

Trade-off: keyword matching accepts false positives (a non-cost number
whose key happens to contain "fee" is counted) in exchange for picking
up cost fields that new task forms introduce without a code change. Do
not replace the rules with a closed list of known field names.
"""
import math

FUEL = 'fuel'
LABOR = 'labor'
OTHER = 'other'

TASK = 'task'
BOUGHT_ITEMS = 'bought_items'
VEHICLE = 'vehicle'

TOTAL_KEYS = ('totalCost', 'total')
FUEL_KEY = 'fuelCost'
LABOR_KEY = 'laborCost'
UNIT_PRICE_KEYS = ('pricePerUnit', 'unitPrice', 'price_per_unit', 'unit_price')

COST_KEYWORDS = ('cost', 'price', 'amount', 'expense', 'fee', 'charge')

# Well-known record attributes; everything else on a record is payload
RECORD_ATTRIBUTES = frozenset({
    'id', '_id', 'userId', 'user_id', 'user_uid', 'fieldId', 'taskType',
    'operation', 'status', 'recordDate', 'createdAt', 'fieldName',
    'boughtItems', 'vehicleUpdate', 'vehicleUpdates', 'data',
})

# Bookkeeping keys on child documents that are never costs
CHILD_ATTRIBUTES = frozenset({'id', '_id', 'recordId'})


def _contains(keyword):
    return lambda key: keyword in key


def _contains_any(keywords):
    return lambda key: any(keyword in key for keyword in keywords)


COST_RULES = [
    (_contains('fuel'), FUEL),
    (_contains('labor'), LABOR),
    (_contains_any(COST_KEYWORDS), OTHER),
]


def to_number(value):
    """Coerce a stored value to float; anything unusable counts as 0"""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def is_numeric(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def classify_key(key, rules=COST_RULES):
    """Return the bucket for a payload key, or None if it is not cost-like"""
    lowered = key.lower()
    for predicate, bucket in rules:
        if predicate(lowered):
            return bucket
    return None


def record_payload(record):
    """
    The dynamic part of a record.

    Older clients nest it under ``data``; newer ones write the fields at the
    top level next to the well-known attributes.
    """
    nested = record.get('data')
    if isinstance(nested, dict):
        return nested
    return {k: v for k, v in record.items() if k not in RECORD_ATTRIBUTES}


def record_total(payload):
    for key in TOTAL_KEYS:
        if key in payload:
            return to_number(payload.get(key))
    return 0.0


class CostBreakdown:
    """
    Fuel/labor/other split of one record (or a sum of records).

    The same amounts are also tracked by source (task payload, bought items,
    vehicle update), so both views always add up to the same grand total.
    """

    def __init__(self):
        self.buckets = {FUEL: 0.0, LABOR: 0.0, OTHER: 0.0}
        self.sources = {TASK: 0.0, BOUGHT_ITEMS: 0.0, VEHICLE: 0.0}

    def add(self, bucket, source, amount):
        self.buckets[bucket] += amount
        self.sources[source] += amount

    def merge(self, other):
        for bucket, amount in other.buckets.items():
            self.buckets[bucket] += amount
        for source, amount in other.sources.items():
            self.sources[source] += amount
        return self

    @property
    def fuel_cost(self):
        return self.buckets[FUEL]

    @property
    def labor_cost(self):
        return self.buckets[LABOR]

    @property
    def other_cost(self):
        return self.buckets[OTHER]

    @property
    def grand_total(self):
        return self.fuel_cost + self.labor_cost + self.other_cost

    def amount_for(self, category):
        """Bucket amount for 'fuel' | 'labor' | 'other', grand total for 'all'"""
        if category in self.buckets:
            return self.buckets[category]
        return self.grand_total

    def to_dict(self):
        return {
            'fuelCost': round(self.fuel_cost, 2),
            'laborCost': round(self.labor_cost, 2),
            'otherCost': round(self.other_cost, 2),
            'grandTotal': round(self.grand_total, 2),
        }

    def __repr__(self):
        return (f"CostBreakdown(fuel={self.fuel_cost}, labor={self.labor_cost}, "
                f"other={self.other_cost})")


class CostClassifier:
    """classify(record) -> CostBreakdown"""

    def __init__(self, rules=None):
        self.rules = list(rules) if rules is not None else list(COST_RULES)

    def _scan(self, payload, exclude):
        """Yield (bucket, amount) for every numeric cost-like key not excluded"""
        for key, value in payload.items():
            if key in exclude or not isinstance(key, str) or not is_numeric(value):
                continue
            bucket = classify_key(key, self.rules)
            if bucket is not None:
                yield bucket, to_number(value)

    def classify(self, record):
        breakdown = CostBreakdown()
        self._classify_task(record_payload(record), breakdown)

        vehicle_update = record.get('vehicleUpdate')
        if isinstance(vehicle_update, dict):
            self._classify_vehicle(vehicle_update, breakdown)

        for item in record.get('boughtItems') or []:
            if isinstance(item, dict):
                self._classify_item(item, breakdown)

        return breakdown

    def grand_total(self, record):
        return self.classify(record).grand_total

    def _classify_task(self, payload, breakdown):
        found_keyed_cost = False
        for bucket, amount in self._scan(payload, exclude=set(TOTAL_KEYS)):
            found_keyed_cost = True
            breakdown.add(bucket, TASK, amount)

        # A bare total only counts when nothing itemised it already
        if not found_keyed_cost:
            total = record_total(payload)
            if total > 0:
                breakdown.add(OTHER, TASK, total)

    def _classify_vehicle(self, vehicle_update, breakdown):
        fuel = to_number(vehicle_update.get(FUEL_KEY))
        labor = to_number(vehicle_update.get(LABOR_KEY))
        breakdown.add(FUEL, VEHICLE, fuel)
        breakdown.add(LABOR, VEHICLE, labor)

        total = record_total(vehicle_update)
        if total > fuel + labor:
            breakdown.add(OTHER, VEHICLE, total - (fuel + labor))

        exclude = set(TOTAL_KEYS) | {FUEL_KEY, LABOR_KEY} | CHILD_ATTRIBUTES
        for bucket, amount in self._scan(vehicle_update, exclude=exclude):
            breakdown.add(bucket, VEHICLE, amount)

    def _classify_item(self, item, breakdown):
        breakdown.add(OTHER, BOUGHT_ITEMS, record_total(item))

        exclude = set(TOTAL_KEYS) | set(UNIT_PRICE_KEYS) | CHILD_ATTRIBUTES
        for _bucket, amount in self._scan(item, exclude=exclude):
            breakdown.add(OTHER, BOUGHT_ITEMS, amount)


def summarize(records, classifier=None):
    """Sum the breakdowns of many records"""
    classifier = classifier or CostClassifier()
    total = CostBreakdown()
    for record in records:
        total.merge(classifier.classify(record))
    return total
