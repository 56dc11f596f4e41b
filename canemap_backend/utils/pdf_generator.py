"""
PDF Generation Utilities for CaneMap
Renders a ReportDocument (see utils/report_renderer.py) to a fixed-page PDF
"""
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.enums import TA_CENTER
from markupsafe import escape
import io

HEADER_COLOR = colors.HexColor('#2f6b2f')
FOOTER_COLOR = colors.HexColor('#eef6ee')


class PDFGenerator:
    """Generate PDF reports from a ReportDocument"""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self.setup_custom_styles()

    def setup_custom_styles(self):
        """Setup custom paragraph styles"""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Heading1'],
            fontSize=22,
            textColor=HEADER_COLOR,
            spaceAfter=6,
            alignment=TA_CENTER
        ))

        self.styles.add(ParagraphStyle(
            name='Subtitle',
            parent=self.styles['Normal'],
            fontSize=12,
            textColor=colors.HexColor('#666666'),
            spaceAfter=20,
            alignment=TA_CENTER
        ))

        self.styles.add(ParagraphStyle(
            name='SectionHeader',
            parent=self.styles['Heading2'],
            fontSize=15,
            textColor=colors.HexColor('#333333'),
            spaceAfter=10,
            spaceBefore=14
        ))

        self.styles.add(ParagraphStyle(
            name='RecordHeader',
            parent=self.styles['Heading3'],
            fontSize=12,
            spaceBefore=8,
            spaceAfter=4
        ))

        self.styles.add(ParagraphStyle(
            name='InfoText',
            parent=self.styles['Normal'],
            fontSize=10,
            textColor=colors.HexColor('#444444')
        ))

        self.styles.add(ParagraphStyle(
            name='CellText',
            parent=self.styles['Normal'],
            fontSize=9,
            leading=11
        ))

    def _cell(self, value):
        # Paragraph cells wrap long task details instead of overflowing the page
        return Paragraph(str(escape(value)), self.styles['CellText'])

    def _table(self, block, available_width):
        data = [[self._cell(h) for h in block['header']]]
        data.extend([self._cell(cell) for cell in row] for row in block['rows'])
        if block.get('footer'):
            data.append([self._cell(cell) for cell in block['footer']])

        column_width = available_width / max(len(block['header']), 1)
        table = Table(data, colWidths=[column_width] * len(block['header']), repeatRows=1)

        style = [
            ('BACKGROUND', (0, 0), (-1, 0), HEADER_COLOR),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 6),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ]
        if block.get('footer'):
            style.append(('BACKGROUND', (0, -1), (-1, -1), FOOTER_COLOR))
        table.setStyle(TableStyle(style))
        return table

    def _details(self, block):
        lines = '<br/>'.join(
            f"<b>{escape(label)}:</b> {escape(value)}" for label, value in block['items']
        )
        return Paragraph(lines, self.styles['InfoText'])

    def _flowables(self, block, available_width):
        kind = block['kind']
        if kind == 'subheading':
            return [Paragraph(str(escape(block['text'])), self.styles['RecordHeader'])]
        if kind == 'text':
            return [Paragraph(str(escape(block['text'])), self.styles['InfoText']), Spacer(1, 4)]
        if kind == 'details':
            if not block['items']:
                return []
            return [self._details(block), Spacer(1, 6)]
        if kind == 'table':
            return [self._table(block, available_width), Spacer(1, 10)]
        raise ValueError(f"Unknown block kind '{kind}'")

    def generate_field_report(self, document):
        """
        Generate the field operations report PDF

        Returns:
            bytes: the PDF file content
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, rightMargin=54, leftMargin=54,
                                topMargin=54, bottomMargin=36,
                                title=document.title)
        available_width = A4[0] - 108

        story = [
            Paragraph(str(escape(document.title)), self.styles['CustomTitle']),
            Paragraph(str(escape(document.subtitle)), self.styles['Subtitle']),
        ]

        for section in document.sections:
            story.append(Paragraph(str(escape(section['title'])), self.styles['SectionHeader']))
            for block in section['blocks']:
                story.extend(self._flowables(block, available_width))

        footer_text = "<i>This report was generated by CaneMap.</i>"
        story.append(Spacer(1, 0.4 * inch))
        story.append(Paragraph(footer_text, self.styles['InfoText']))

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        buffer.close()
        return pdf_bytes
