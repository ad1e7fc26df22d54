"""
Digest rendering - turns a filtered snapshot into one recipient's message.

Produces the HTML narrative, a plain-text alternative, and two attachments:
a JSON export for machines and a PDF summary (reportlab) for people.
Rendering is pure: no database or network access.
"""

from __future__ import annotations

import html
import json
from datetime import datetime
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from lastwish.delivery.models import (
    Attachment,
    Digest,
    FinancialSnapshot,
    Owner,
    Recipient,
    Subscription,
    utc_now,
)

TEST_SUBJECT_PREFIX = "🧪 Test Email - "
TEST_FILENAME_PREFIX = "test-"


class DigestRenderer:
    """Renders per-recipient Last Wish digests."""

    def render(
        self,
        owner: Owner,
        recipient: Recipient,
        snapshot: FinancialSnapshot,
        subscription: Subscription,
        test_mode: bool = False,
        sent_at: datetime | None = None,
    ) -> Digest:
        """
        Build the digest for one recipient.

        Args:
            owner: Account owner (named in the narrative and subject)
            recipient: Greeting uses recipient.display_name
            snapshot: Already filtered to the owner's included categories
            subscription: Source of the personal message and interval
            test_mode: Adds the TEST MODE banner and the subject/filename prefixes
            sent_at: Delivery timestamp for the footer and filenames (default: now)
        """
        sent_at = sent_at or utc_now()
        date_stamp = sent_at.strftime("%Y-%m-%d")
        prefix = TEST_FILENAME_PREFIX if test_mode else ""

        subject = f"Important: Financial Data from {owner.display_name} - Last Wish"
        if test_mode:
            subject = TEST_SUBJECT_PREFIX + subject

        payload = snapshot.export()
        summary = {category.value: count for category, count in snapshot.counts().items()}

        attachments = (
            Attachment(
                filename=f"{prefix}financial-data-{date_stamp}.json",
                content=self._render_json(owner, snapshot, sent_at, test_mode).encode("utf-8"),
                mime_type="application/json",
            ),
            Attachment(
                filename=f"{prefix}financial-summary-{date_stamp}.pdf",
                content=self._render_pdf(owner, snapshot, sent_at),
                mime_type="application/pdf",
            ),
        )

        return Digest(
            subject=subject,
            html=self._render_html(owner, recipient, snapshot, subscription, test_mode, sent_at),
            text=self._render_text(owner, recipient, snapshot, subscription, test_mode, sent_at),
            attachments=attachments,
            summary=summary,
            payload=payload,
        )

    # ------------------------------------------------------------------
    # Narrative
    # ------------------------------------------------------------------

    @staticmethod
    def _summary_lines(snapshot: FinancialSnapshot) -> list[str]:
        """'Accounts: 2 records' per category; zero-count categories are omitted."""
        lines = []
        for category, count in snapshot.counts().items():
            if count == 0:
                continue
            noun = "record" if count == 1 else "records"
            lines.append(f"{category.label}: {count} {noun}")
        return lines

    def _render_html(
        self,
        owner: Owner,
        recipient: Recipient,
        snapshot: FinancialSnapshot,
        subscription: Subscription,
        test_mode: bool,
        sent_at: datetime,
    ) -> str:
        esc = html.escape
        owner_name = esc(owner.display_name)
        interval = esc(subscription.check_in_interval.describe())

        parts = [
            "<html>",
            '<body style="font-family: Arial, sans-serif; color: #1f2937; max-width: 640px;">',
        ]

        if test_mode:
            parts.append(
                '<div style="background: #fef3c7; border: 2px solid #f59e0b; padding: 12px; '
                'margin-bottom: 16px;"><strong>TEST MODE</strong> - this is a test of '
                f"{owner_name}'s Last Wish delivery. No action is needed.</div>"
            )

        parts.append(f"<p>Dear {esc(recipient.display_name)},</p>")
        parts.append(
            '<div style="background: #fee2e2; border-left: 4px solid #dc2626; padding: 12px;">'
            f"<p>You are receiving this message because {owner_name} set up Last Wish "
            f"and has not checked in for more than {interval}. They chose you to receive "
            "their financial information if that ever happened.</p></div>"
        )

        if subscription.message:
            parts.append(
                '<div style="background: #eff6ff; border-left: 4px solid #3b82f6; padding: 12px; '
                'margin-top: 16px;">'
                f"<h3>A personal message from {owner_name}</h3>"
                f'<p style="white-space: pre-wrap;">{esc(subscription.message)}</p></div>'
            )

        lines = self._summary_lines(snapshot)
        parts.append("<h3>Included financial data</h3>")
        if lines:
            parts.append("<ul>")
            parts.extend(f"<li>{esc(line)}</li>" for line in lines)
            parts.append("</ul>")
        else:
            parts.append("<p>No financial records were available to include.</p>")

        parts.append(
            "<p>The complete records are attached as a JSON export and a PDF summary.</p>"
            '<hr><p style="color: #6b7280; font-size: 12px;">'
            f"Delivered by Last Wish on {sent_at.strftime('%B %d, %Y')}. "
            "Please keep this information secure.</p>"
        )
        parts.append("</body></html>")
        return "\n".join(parts)

    def _render_text(
        self,
        owner: Owner,
        recipient: Recipient,
        snapshot: FinancialSnapshot,
        subscription: Subscription,
        test_mode: bool,
        sent_at: datetime,
    ) -> str:
        lines = []
        if test_mode:
            lines += ["*** TEST MODE - no action is needed ***", ""]

        lines += [
            f"Dear {recipient.display_name},",
            "",
            f"You are receiving this message because {owner.display_name} set up Last Wish "
            f"and has not checked in for more than "
            f"{subscription.check_in_interval.describe()}.",
            "",
        ]

        if subscription.message:
            lines += [f"A personal message from {owner.display_name}:", "", subscription.message, ""]

        lines.append("Included financial data:")
        summary = self._summary_lines(snapshot)
        lines += [f"  - {line}" for line in summary] or ["  (none available)"]
        lines += [
            "",
            "The complete records are attached as a JSON export and a PDF summary.",
            "",
            "---",
            f"Delivered by Last Wish on {sent_at.strftime('%B %d, %Y')}.",
        ]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    @staticmethod
    def _render_json(
        owner: Owner, snapshot: FinancialSnapshot, sent_at: datetime, test_mode: bool
    ) -> str:
        document = {
            "owner": {"name": owner.display_name, "email": owner.email},
            "generatedAt": sent_at.isoformat(),
            "testMode": test_mode,
            "summary": {category.value: count for category, count in snapshot.counts().items()},
            "data": snapshot.export(),
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    @staticmethod
    def _render_pdf(owner: Owner, snapshot: FinancialSnapshot, sent_at: datetime) -> bytes:
        styles = getSampleStyleSheet()
        buffer = BytesIO()

        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            leftMargin=0.5 * inch,
            rightMargin=0.5 * inch,
            topMargin=0.6 * inch,
            bottomMargin=0.6 * inch,
            title="Last Wish Financial Summary",
        )

        story = [
            Paragraph("Financial Summary", styles["Title"]),
            Paragraph(
                f"Prepared for the recipients of {html.escape(owner.display_name)} "
                f"on {sent_at.strftime('%B %d, %Y')}",
                styles["Normal"],
            ),
            Spacer(1, 0.2 * inch),
        ]

        if not snapshot.total_records():
            story.append(Paragraph("No financial records were available to include.", styles["Normal"]))

        for category in snapshot:
            records = snapshot.records(category)
            if not records:
                continue

            story.append(Paragraph(f"{category.label} ({len(records)})", styles["Heading2"]))
            columns = records[0].columns
            table_data = [[header for header, _ in columns]]
            table_data += [[record.cell(attr) for _, attr in columns] for record in records]

            tbl = Table(table_data, repeatRows=1)
            tbl.setStyle(
                TableStyle(
                    [
                        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                        ("FONTSIZE", (0, 0), (-1, -1), 8),
                        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                        ("ALIGN", (-1, 1), (-1, -1), "RIGHT"),
                        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
                    ]
                )
            )
            story.append(tbl)
            story.append(Spacer(1, 0.2 * inch))

        doc.build(story)
        return buffer.getvalue()
