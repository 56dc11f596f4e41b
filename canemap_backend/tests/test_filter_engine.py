"""
Unit Tests for record filtering
"""

import math
import unittest
from datetime import datetime, timedelta

from canemap_backend.utils.filter_engine import FilterState, apply_filter

NOW = datetime(2024, 6, 15, 14, 30)


def make_record(record_id, days_ago=0, **fields):
    record = {
        'id': record_id,
        'userId': 'u1',
        'fieldId': fields.pop('fieldId', 'f1'),
        'operation': fields.pop('operation', 'Fertilizing'),
        'taskType': fields.pop('taskType', 'Task'),
        'recordDate': NOW - timedelta(days=days_ago) if days_ago is not None else None,
        'data': fields.pop('data', {}),
        'boughtItems': [],
        'vehicleUpdate': None,
    }
    record.update(fields)
    return record


class TestDateFilter(unittest.TestCase):

    def setUp(self):
        self.records = [
            make_record('today', 0),
            make_record('three_days', 3),
            make_record('ten_days', 10),
            make_record('forty_days', 40),
        ]

    def ids(self, state):
        return [r['id'] for r in apply_filter(self.records, state, now=NOW)]

    def test_all_returns_everything(self):
        self.assertEqual(self.ids(FilterState()), ['today', 'three_days', 'ten_days', 'forty_days'])

    def test_today(self):
        self.assertEqual(self.ids(FilterState(date_mode='today')), ['today'])

    def test_week_and_month_windows(self):
        self.assertEqual(self.ids(FilterState(date_mode='week')), ['today', 'three_days'])
        self.assertEqual(self.ids(FilterState(date_mode='month')), ['today', 'three_days', 'ten_days'])

    def test_custom_start_only(self):
        """
        Scenario: custom range with only a start bound
        Expected: every record on or after the start day, none before
        """
        state = FilterState(date_mode='custom', start=NOW - timedelta(days=10))
        self.assertEqual(self.ids(state), ['today', 'three_days', 'ten_days'])

    def test_custom_end_only(self):
        state = FilterState(date_mode='custom', end=NOW - timedelta(days=10))
        self.assertEqual(self.ids(state), ['ten_days', 'forty_days'])

    def test_custom_end_includes_whole_day(self):
        records = [make_record('late', None, recordDate=datetime(2024, 6, 5, 23, 59))]
        state = FilterState(date_mode='custom', end='2024-06-05')
        self.assertEqual([r['id'] for r in apply_filter(records, state, now=NOW)], ['late'])

    def test_custom_without_bounds_is_no_filter(self):
        self.assertEqual(len(self.ids(FilterState(date_mode='custom'))), 4)

    def test_undated_record_counts_as_now(self):
        records = [make_record('undated', None)]
        self.assertEqual(len(apply_filter(records, FilterState(date_mode='today'), now=NOW)), 1)

    def test_created_at_fallback(self):
        records = [make_record('created', None, createdAt=NOW - timedelta(days=40))]
        self.assertEqual(apply_filter(records, FilterState(date_mode='month'), now=NOW), [])


class TestAttributeAndCostFilters(unittest.TestCase):

    def setUp(self):
        self.records = [
            make_record('r1', 1, fieldId='f1', operation='Planting', data={'seedCost': 100}),
            make_record('r2', 2, fieldId='f2', operation='Planting', data={'laborCost': 300}),
            make_record('r3', 3, fieldId='f1', operation='Harvesting', taskType='Vehicle',
                        data={}, vehicleUpdate={'fuelCost': 500, 'totalCost': 500}),
        ]

    def ids(self, state):
        return [r['id'] for r in apply_filter(self.records, state, now=NOW)]

    def test_field_operation_and_task_type_compose(self):
        self.assertEqual(self.ids(FilterState(field_id='f1')), ['r1', 'r3'])
        self.assertEqual(self.ids(FilterState(field_id='f1', operation='Planting')), ['r1'])
        self.assertEqual(self.ids(FilterState(task_type='Vehicle')), ['r3'])

    def test_all_selection_means_no_filter(self):
        self.assertEqual(len(self.ids(FilterState(field_id='all', operation=''))), 3)

    def test_cost_range(self):
        self.assertEqual(self.ids(FilterState(cost_min=200)), ['r2', 'r3'])
        self.assertEqual(self.ids(FilterState(cost_max=300)), ['r1', 'r2'])
        self.assertEqual(self.ids(FilterState(cost_min=100, cost_max=300)), ['r1', 'r2'])

    def test_cost_category(self):
        self.assertEqual(self.ids(FilterState(cost_category='fuel')), ['r3'])
        self.assertEqual(self.ids(FilterState(cost_category='labor')), ['r2'])
        self.assertEqual(self.ids(FilterState(cost_category='other')), ['r1'])

    def test_idempotent_and_pure(self):
        state = FilterState(date_mode='week', cost_min=50)
        snapshot = [dict(r) for r in self.records]

        first = apply_filter(self.records, state, now=NOW)
        second = apply_filter(self.records, state, now=NOW)

        self.assertEqual(first, second)
        self.assertEqual(self.records, snapshot)
        self.assertIsNot(first, self.records)

    def test_invalid_modes_are_rejected(self):
        with self.assertRaises(ValueError):
            FilterState(date_mode='fortnight')
        with self.assertRaises(ValueError):
            FilterState(cost_category='tax')
        with self.assertRaises(ValueError):
            FilterState.from_args({'date': 'custom', 'start': '2023-13-45'})
        with self.assertRaises(ValueError):
            FilterState(date_mode='custom', end='yesterday')


class TestFilterStateFromArgs(unittest.TestCase):

    def test_from_args(self):
        state = FilterState.from_args({
            'date': 'Custom', 'start': '2024-06-01', 'field': 'f1',
            'cost_category': 'fuel', 'cost_min': '10', 'cost_max': 'abc',
        })
        self.assertEqual(state.date_mode, 'custom')
        self.assertEqual(state.start, datetime(2024, 6, 1))
        self.assertEqual(state.field_id, 'f1')
        self.assertEqual(state.cost_min, 10.0)
        self.assertTrue(math.isinf(state.cost_max))

        self.assertEqual(state.to_dict()['start'], '2024-06-01')
        self.assertIsNone(state.to_dict()['cost_max'])
        self.assertEqual(state.to_dict()['operation'], 'all')

    def test_defaults(self):
        state = FilterState.from_args({})
        self.assertEqual(state.date_mode, 'all')
        self.assertFalse(state.uses_costs())


if __name__ == '__main__':
    unittest.main()
