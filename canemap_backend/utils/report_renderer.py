"""
Report rendering.

Two outputs from the same data:

- Tabular: one row per record of the current filtered view, as CSV or as a
  printable HTML page, with a trailing total row.
- Document: a ReportDocument built once from an assembled Report. The HTML
  preview (here) and the PDF artifact (utils/pdf_generator.py) both walk
  the same ReportDocument, so what the owner previews is what the reviewer
  receives.

All user-controlled text is escaped (HTML) or quoted (CSV).
"""
import csv
import io
import re
from datetime import datetime

from markupsafe import escape

from canemap_backend.config.environment import CURRENCY_SYMBOL
from canemap_backend.utils.cost_classifier import CostClassifier, is_numeric, record_payload, to_number
from canemap_backend.utils.field_name_resolver import UNKNOWN_FIELD
from canemap_backend.utils.record_dates import format_date, record_date

NOT_AVAILABLE = 'N/A'

TABLE_HEADER = ['Status', 'Field', 'Operation', 'Task Type', 'Date', 'Total Cost']

# Payload keys that are bookkeeping, never task-specific details
SKIP_KEYS = frozenset({
    'totalCost', 'notes', 'remarks', 'userId', 'user_id', 'user_uid',
    'fieldId', 'status', 'operation', 'taskType', 'recordDate', 'createdAt',
    'boughtItems', 'vehicleUpdates', 'fieldName', 'id',
})

MONEY_HINTS = ('cost', 'price', 'amount')
DATE_HINTS = ('date', 'time')
AREA_HINTS = ('area', 'hectare')


def money(value):
    return f"{CURRENCY_SYMBOL}{to_number(value):,.2f}"


def humanize_key(key):
    """'fertilizerType' -> 'Fertilizer Type'"""
    spaced = re.sub(r'([A-Z])', r' \1', key).replace('_', ' ').strip()
    return spaced[:1].upper() + spaced[1:]


def format_field_value(key, value):
    lowered = key.lower()

    if isinstance(value, bool):
        return 'Yes' if value else 'No'

    if isinstance(value, dict) and ('seconds' in value or '_seconds' in value):
        return format_date(value)
    if isinstance(value, datetime):
        return format_date(value)

    if is_numeric(value):
        if any(hint in lowered for hint in MONEY_HINTS):
            return money(value)
        if any(hint in lowered for hint in DATE_HINTS):
            return format_date(value, default=str(value))
        if any(hint in lowered for hint in AREA_HINTS):
            return f"{value} ha"
        if 'weight' in lowered:
            return f"{value} kg"
        return str(value)

    return str(value)


def task_fields(record):
    """
    Task-specific payload fields as (label, display value) pairs.

    Nested structures and empty values are left out.
    """
    fields = []
    for key, value in record_payload(record).items():
        if key in SKIP_KEYS or key.startswith('_'):
            continue
        if value is None or value == '' or isinstance(value, list):
            continue
        if isinstance(value, dict) and not ('seconds' in value or '_seconds' in value):
            continue
        fields.append((humanize_key(key), format_field_value(key, value)))
    return fields


def operation_cell(record):
    operation = record.get('operation') or NOT_AVAILABLE
    details = task_fields(record)
    if not details:
        return operation
    return f"{operation} ({'; '.join(f'{label}: {value}' for label, value in details)})"


# ==================== TABULAR ====================

def build_rows(records, classifier=None):
    """
    Returns:
        Tuple of (rows, grand_total). Each row follows TABLE_HEADER, with the
        total as a float.
    """
    classifier = classifier or CostClassifier()
    rows = []
    grand_total = 0.0
    for record in records:
        total = classifier.grand_total(record)
        grand_total += total
        rows.append([
            record.get('status') or NOT_AVAILABLE,
            record.get('fieldName') or UNKNOWN_FIELD,
            operation_cell(record),
            record.get('taskType') or NOT_AVAILABLE,
            format_date(record_date(record)),
            total,
        ])
    return rows, grand_total


def render_csv(records, classifier=None):
    rows, grand_total = build_rows(records, classifier)

    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL)
    writer.writerow(TABLE_HEADER)
    for row in rows:
        writer.writerow(row[:-1] + [f"{row[-1]:.2f}"])
    writer.writerow(['', '', '', '', 'Total', f"{grand_total:.2f}"])

    csv_content = output.getvalue()
    output.close()
    return csv_content


def render_print_html(records, classifier=None, title='Records Report', generated_at=None):
    rows, grand_total = build_rows(records, classifier)
    generated_at = generated_at or datetime.utcnow()

    body_rows = ''.join(
        '<tr>'
        + ''.join(f'<td>{escape(cell)}</td>' for cell in row[:-1])
        + f'<td class="amount">{escape(money(row[-1]))}</td>'
        + '</tr>'
        for row in rows
    )

    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{escape(title)}</title>
  <style>
    body {{ font-family: Arial, sans-serif; padding: 20px; }}
    table {{ width: 100%; border-collapse: collapse; margin-top: 20px; }}
    th, td {{ border: 1px solid #ddd; padding: 8px; text-align: left; }}
    th {{ background-color: #f2f2f2; font-weight: bold; }}
    td.amount {{ text-align: right; }}
    tfoot td {{ font-weight: bold; background-color: #f9fafb; }}
  </style>
</head>
<body>
  <h1>{escape(title)}</h1>
  <p>Generated: {generated_at.strftime('%B %d, %Y at %H:%M UTC')}</p>
  <p>{len(rows)} record(s)</p>
  <table>
    <thead><tr>{''.join(f'<th>{escape(h)}</th>' for h in TABLE_HEADER)}</tr></thead>
    <tbody>{body_rows}</tbody>
    <tfoot><tr><td colspan="5">Total</td><td class="amount">{escape(money(grand_total))}</td></tr></tfoot>
  </table>
</body>
</html>
"""


# ==================== DOCUMENT MODEL ====================

class ReportDocument:
    """
    Renderer-neutral document: a title and an ordered list of sections.

    Each section is {'title': str, 'blocks': [...]} where a block is one of
        {'kind': 'details', 'items': [(label, value), ...]}
        {'kind': 'table', 'header': [...], 'rows': [[...], ...], 'footer': [...] | None}
        {'kind': 'subheading', 'text': str}
        {'kind': 'text', 'text': str}
    Every value is already a display string.
    """

    def __init__(self, title, subtitle, sections):
        self.title = title
        self.subtitle = subtitle
        self.sections = sections


FIELD_PROFILE_KEYS = [
    ('variety', 'Variety'),
    ('area', 'Area'),
    ('barangay', 'Barangay'),
    ('municipality', 'Municipality'),
    ('currentGrowthStage', 'Current Growth Stage'),
    ('plantingDate', 'Planting Date'),
    ('expectedHarvestDate', 'Expected Harvest Date'),
]

BOUGHT_ITEM_HEADER = ['Item', 'Quantity', 'Unit', 'Unit Price', 'Total']

VEHICLE_KEYS = [
    ('date', 'Date'),
    ('vehicleType', 'Vehicle Type'),
    ('driverCount', 'Drivers'),
    ('unitsTransported', 'Units Transported'),
    ('weight', 'Weight'),
    ('fuelCost', 'Fuel Cost'),
    ('laborCost', 'Labor Cost'),
    ('totalCost', 'Total Cost'),
    ('notes', 'Notes'),
]


def _first(doc, *keys, default=None):
    for key in keys:
        value = doc.get(key)
        if value not in (None, ''):
            return value
    return default


def _field_profile_section(report):
    items = [('Field Name', report.field_name)]
    for key, label in FIELD_PROFILE_KEYS:
        value = report.field.get(key)
        if value in (None, ''):
            continue
        items.append((label, format_field_value(key, value)))
    items.append(('Records', str(report.record_count)))
    items.append(('Report Generated', report.generated_at.strftime('%B %d, %Y at %H:%M UTC')))
    return {'title': 'Field Profile', 'blocks': [{'kind': 'details', 'items': items}]}


def _timeline_section(report):
    rows = [
        [entry['status'], str(entry['count']), format_date(entry['earliestDate'])]
        for entry in report.timeline
    ]
    if not rows:
        return {'title': 'Growth Timeline', 'blocks': [{'kind': 'text', 'text': 'No records yet.'}]}
    return {
        'title': 'Growth Timeline',
        'blocks': [{'kind': 'table', 'header': ['Status', 'Records', 'Earliest Date'],
                    'rows': rows, 'footer': None}],
    }


def _bought_items_block(items):
    rows = []
    subtotal = 0.0
    for item in items:
        total = to_number(_first(item, 'totalCost', 'total', default=0))
        subtotal += total
        rows.append([
            str(_first(item, 'itemName', 'name', 'item', default=NOT_AVAILABLE)),
            str(_first(item, 'quantity', default='')),
            str(_first(item, 'unit', default='')),
            money(_first(item, 'pricePerUnit', 'unitPrice', 'price_per_unit', 'unit_price', default=0)),
            money(total),
        ])
    return {'kind': 'table', 'header': BOUGHT_ITEM_HEADER, 'rows': rows,
            'footer': ['', '', '', 'Subtotal', money(subtotal)]}


def _vehicle_block(vehicle_update):
    items = []
    for key, label in VEHICLE_KEYS:
        value = vehicle_update.get(key)
        if value in (None, ''):
            continue
        items.append((label, format_field_value(key, value)))
    return {'kind': 'details', 'items': items}


def _record_blocks(record, breakdown):
    heading = (f"{record.get('taskType') or record.get('operation') or 'Task'} - "
               f"{format_date(record_date(record))}")
    details = [
        ('Operation', record.get('operation') or NOT_AVAILABLE),
        ('Task Type', record.get('taskType') or NOT_AVAILABLE),
    ]
    details.extend(task_fields(record))
    notes = record_payload(record).get('notes') or record.get('notes')
    if notes:
        details.append(('Notes', str(notes)))

    blocks = [{'kind': 'subheading', 'text': heading}, {'kind': 'details', 'items': details}]

    if record.get('boughtItems'):
        blocks.append({'kind': 'text', 'text': 'Bought Items'})
        blocks.append(_bought_items_block(record['boughtItems']))

    if record.get('vehicleUpdate'):
        blocks.append({'kind': 'text', 'text': 'Vehicle Update'})
        blocks.append(_vehicle_block(record['vehicleUpdate']))

    blocks.append({'kind': 'text', 'text': f"Record total: {money(breakdown.grand_total)}"})
    return blocks


def _cost_summary_section(report):
    summary = report.summary
    totals = report.totals
    return {
        'title': 'Cost Summary',
        'blocks': [
            {
                'kind': 'table',
                'header': ['Source', 'Amount'],
                'rows': [
                    ['Task Costs', money(summary['totalTaskCost'])],
                    ['Bought Items', money(summary['totalBoughtItemsCost'])],
                    ['Vehicle Costs', money(summary['totalVehicleCost'])],
                ],
                'footer': ['Grand Total', money(summary['grandTotal'])],
            },
            {
                'kind': 'table',
                'header': ['Category', 'Amount'],
                'rows': [
                    ['Fuel', money(totals.fuel_cost)],
                    ['Labor', money(totals.labor_cost)],
                    ['Other', money(totals.other_cost)],
                ],
                'footer': ['Grand Total', money(totals.grand_total)],
            },
        ],
    }


def build_document(report):
    sections = [_field_profile_section(report), _timeline_section(report)]

    for status, entries in report.groups().items():
        blocks = []
        for record, breakdown in entries:
            blocks.extend(_record_blocks(record, breakdown))
        sections.append({'title': f"{status} ({len(entries)} record(s))", 'blocks': blocks})

    sections.append(_cost_summary_section(report))
    return ReportDocument(
        title='Field Operations Report',
        subtitle=report.field_name,
        sections=sections,
    )


# ==================== HTML PREVIEW ====================

def _html_block(block):
    kind = block['kind']
    if kind == 'subheading':
        return f"<h3>{escape(block['text'])}</h3>"
    if kind == 'text':
        return f"<p>{escape(block['text'])}</p>"
    if kind == 'details':
        items = ''.join(
            f"<dt>{escape(label)}</dt><dd>{escape(value)}</dd>" for label, value in block['items']
        )
        return f"<dl>{items}</dl>"
    if kind == 'table':
        head = ''.join(f"<th>{escape(h)}</th>" for h in block['header'])
        body = ''.join(
            '<tr>' + ''.join(f"<td>{escape(cell)}</td>" for cell in row) + '</tr>'
            for row in block['rows']
        )
        foot = ''
        if block.get('footer'):
            foot = '<tfoot><tr>' + ''.join(f"<td>{escape(cell)}</td>" for cell in block['footer']) + '</tr></tfoot>'
        return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody>{foot}</table>"
    raise ValueError(f"Unknown block kind '{kind}'")


def render_document_html(document):
    sections = ''.join(
        f"<section><h2>{escape(section['title'])}</h2>"
        + ''.join(_html_block(block) for block in section['blocks'])
        + "</section>"
        for section in document.sections
    )
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{escape(document.title)}</title>
  <style>
    body {{ font-family: Arial, sans-serif; padding: 20px; color: #333; }}
    h1 {{ color: #2f6b2f; text-align: center; }}
    h2 {{ border-bottom: 2px solid #2f6b2f; padding-bottom: 4px; }}
    table {{ width: 100%; border-collapse: collapse; margin: 10px 0; }}
    th, td {{ border: 1px solid #ddd; padding: 6px; text-align: left; }}
    th {{ background-color: #2f6b2f; color: #fff; }}
    tfoot td {{ font-weight: bold; background-color: #eef6ee; }}
    dl {{ display: grid; grid-template-columns: max-content auto; gap: 4px 16px; }}
    dt {{ font-weight: bold; }}
  </style>
</head>
<body>
  <h1>{escape(document.title)}</h1>
  <p style="text-align: center;">{escape(document.subtitle)}</p>
  {sections}
</body>
</html>
"""
