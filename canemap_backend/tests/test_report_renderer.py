"""
Unit Tests for CSV, print and document rendering
"""

import csv
import io
import unittest
from datetime import datetime

from canemap_backend.tests.fakes import InMemoryDocumentStore
from canemap_backend.tests.test_report_assembler import seed_field
from canemap_backend.utils.pdf_generator import PDFGenerator
from canemap_backend.utils.report_assembler import ReportAssembler
from canemap_backend.utils.report_renderer import (
    TABLE_HEADER,
    build_document,
    build_rows,
    humanize_key,
    operation_cell,
    render_csv,
    render_document_html,
    render_print_html,
)


def view_records():
    return [
        {
            'id': 'r1', 'status': 'Planting', 'fieldName': 'North "A" Block, East',
            'operation': 'Fertilizing', 'taskType': 'Task', 'recordDate': datetime(2024, 3, 1),
            'data': {'fertilizerType': 'Urea', 'fertilizerCost': 100, 'laborCost': 50, 'applied': True},
            'boughtItems': [{'totalCost': 30}], 'vehicleUpdate': None,
        },
        {
            'id': 'r2', 'status': None, 'fieldName': '<script>alert(1)</script>',
            'operation': 'Hauling', 'taskType': 'Vehicle', 'createdAt': datetime(2024, 3, 2),
            'data': {}, 'boughtItems': [],
            'vehicleUpdate': {'fuelCost': 20, 'totalCost': 20},
        },
    ]


class TestTabularRendering(unittest.TestCase):

    def test_build_rows(self):
        rows, grand_total = build_rows(view_records())
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0][-1], 180)
        self.assertEqual(rows[1][0], 'N/A')
        self.assertEqual(rows[1][4], '2024-03-02')
        self.assertAlmostEqual(grand_total, 200)

    def test_csv_quotes_and_totals(self):
        content = render_csv(view_records())
        rows = list(csv.reader(io.StringIO(content)))

        self.assertEqual(rows[0], TABLE_HEADER)
        self.assertEqual(rows[1][1], 'North "A" Block, East')
        self.assertEqual(rows[1][5], '180.00')
        self.assertEqual(rows[-1], ['', '', '', '', 'Total', '200.00'])
        # Every cell is quoted
        self.assertTrue(content.splitlines()[0].startswith('"Status"'))
        self.assertIn('"North ""A"" Block, East"', content)

    def test_operation_cell_inlines_task_fields(self):
        cell = operation_cell(view_records()[0])
        self.assertTrue(cell.startswith('Fertilizing ('))
        self.assertIn('Fertilizer Type: Urea', cell)
        self.assertIn('Applied: Yes', cell)
        self.assertIn('Fertilizer Cost: ', cell)
        self.assertEqual(operation_cell({'operation': 'Weeding'}), 'Weeding')

    def test_print_html_escapes(self):
        html = render_print_html(view_records(), generated_at=datetime(2024, 3, 5))
        self.assertNotIn('<script>alert(1)</script>', html)
        self.assertIn('&lt;script&gt;', html)
        self.assertIn('2 record(s)', html)

    def test_humanize_key(self):
        self.assertEqual(humanize_key('fertilizerType'), 'Fertilizer Type')
        self.assertEqual(humanize_key('price_per_unit'), 'Price per unit')


class TestDocumentRendering(unittest.TestCase):

    def setUp(self):
        store = InMemoryDocumentStore()
        seed_field(store)
        store.seed('records', 'r5', {'userId': 'u1', 'fieldId': 'f1', 'status': 'Harvesting',
                                     'operation': '<b>Cut</b>', 'recordDate': datetime(2024, 9, 2),
                                     'data': {'notes': 'Tom & Jerry'}})
        self.report = ReportAssembler(store).assemble('f1')
        self.document = build_document(self.report)

    def test_document_sections(self):
        titles = [section['title'] for section in self.document.sections]
        self.assertEqual(titles[0], 'Field Profile')
        self.assertEqual(titles[1], 'Growth Timeline')
        self.assertEqual(titles[2], 'Planting (2 record(s))')
        self.assertEqual(titles[3], 'Harvesting (2 record(s))')
        self.assertEqual(titles[-1], 'Cost Summary')
        self.assertEqual(self.document.subtitle, 'North Block')

        summary_tables = self.document.sections[-1]['blocks']
        self.assertEqual(summary_tables[0]['rows'][1][0], 'Bought Items')
        self.assertTrue(summary_tables[0]['footer'][1].endswith('1,700.00'))

    def test_preview_html_escapes_user_text(self):
        html = render_document_html(self.document)
        self.assertIn('Field Operations Report', html)
        self.assertIn('&lt;b&gt;Cut&lt;/b&gt;', html)
        self.assertIn('Tom &amp; Jerry', html)
        self.assertNotIn('<b>Cut</b>', html)

    def test_pdf_from_same_document(self):
        pdf_bytes = PDFGenerator().generate_field_report(self.document)
        self.assertTrue(pdf_bytes.startswith(b'%PDF'))
        self.assertGreater(len(pdf_bytes), 1000)


if __name__ == '__main__':
    unittest.main()
