"""docket.proofs.export

Rendering of sealed packets.

Exports are derived views. The packet row stays the record; these bytes can
always be regenerated from it plus the log.
"""

from __future__ import annotations

import io
import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from docket import __version__
from docket.core.models import ChainVerification, Event, Task
from docket.core.time import to_iso
from docket.proofs.store import ProofPacket

ExportFormat = Literal["pdf", "json"]

INK = HexColor("#1a1a1a")
MUTED = HexColor("#6e7681")
ACCENT = HexColor("#1f6feb")
BORDER = HexColor("#d0d7de")
PANEL = HexColor("#f6f8fa")


@dataclass(frozen=True, slots=True)
class ExportArtifact:
    content: bytes
    media_type: str
    filename: str


def packet_document(
    packet: ProofPacket, task: Task, events: Sequence[Event], verification: ChainVerification
) -> dict[str, Any]:
    """JSON-safe receipt: packet, task, the snapshotted events and the chain check."""

    return {
        "docket_version": __version__,
        "packet": packet.model_dump(mode="json"),
        "task": {"id": task.id, "key": task.key, "summary": task.summary},
        "verification": verification.model_dump(mode="json"),
        "events": [
            {
                "id": ev.id,
                "seq": ev.seq,
                "event_type": str(ev.event_type),
                "trigger_source": str(ev.trigger_source),
                "created_at": to_iso(ev.created_at),
                "payload": ev.payload,
                "chain_version": ev.chain_version,
                "prev_hash": ev.prev_hash,
                "event_hash": ev.event_hash,
            }
            for ev in events
        ],
    }


def render_json(
    packet: ProofPacket, task: Task, events: Sequence[Event], verification: ChainVerification
) -> ExportArtifact:
    doc = packet_document(packet, task, events, verification)
    return ExportArtifact(
        content=json.dumps(doc, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8"),
        media_type="application/json",
        filename=f"proof-{task.key}-{packet.id[:8]}.json",
    )


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "title", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=18, leading=22,
            textColor=INK, spaceAfter=4,
        ),
        "subtitle": ParagraphStyle(
            "subtitle", parent=base["Normal"], fontName="Helvetica", fontSize=9, textColor=MUTED,
            spaceAfter=12,
        ),
        "heading": ParagraphStyle(
            "heading", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=11, leading=14,
            textColor=ACCENT, spaceBefore=10, spaceAfter=6,
        ),
        "body": ParagraphStyle(
            "body", parent=base["Normal"], fontName="Helvetica", fontSize=10, leading=14, textColor=INK,
        ),
        "cell": ParagraphStyle(
            "cell", parent=base["Normal"], fontName="Helvetica", fontSize=8, leading=10, textColor=INK,
        ),
        "mono": ParagraphStyle(
            "mono", parent=base["Normal"], fontName="Courier", fontSize=7, leading=9, textColor=MUTED,
        ),
        "footer": ParagraphStyle(
            "footer", parent=base["Normal"], fontName="Helvetica", fontSize=7, leading=9, textColor=MUTED,
        ),
    }


def _table(rows: list[list[Any]], col_widths: list[float]) -> Table:
    t = Table(rows, colWidths=col_widths, repeatRows=1)
    t.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), PANEL),
                ("BOX", (0, 0), (-1, -1), 0.5, BORDER),
                ("INNERGRID", (0, 0), (-1, -1), 0.5, BORDER),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    return t


def render_pdf(
    packet: ProofPacket, task: Task, events: Sequence[Event], verification: ChainVerification
) -> ExportArtifact:
    s = _styles()
    story: list[Any] = []

    story.append(Paragraph(f"Proof of Delivery: {escape(task.key)}", s["title"]))
    story.append(Paragraph(escape(task.summary or ""), s["subtitle"]))

    meta = [
        [Paragraph("Packet", s["cell"]), Paragraph(escape(packet.id), s["cell"])],
        [Paragraph("Status", s["cell"]), Paragraph(str(packet.status).title(), s["cell"])],
        [Paragraph("Finalized", s["cell"]), Paragraph(escape(to_iso(packet.finalized_at) or "-"), s["cell"])],
        [Paragraph("Head hash", s["cell"]), Paragraph(escape(packet.head_hash or "-"), s["mono"])],
        [
            Paragraph("Chain", s["cell"]),
            Paragraph(
                "verified" if verification.valid else f"CORRUPTED at {escape(str(verification.corrupted_at))}",
                s["cell"],
            ),
        ],
    ]
    story.append(_table(meta, [1.2 * inch, 5.8 * inch]))

    story.append(Paragraph("Summary", s["heading"]))
    story.append(Paragraph(escape(packet.summary or "No summary."), s["body"]))
    if packet.summary_model:
        story.append(Paragraph(f"Generated by {escape(packet.summary_model)}", s["footer"]))

    story.append(Paragraph("Event trail", s["heading"]))
    rows: list[list[Any]] = [
        [Paragraph(h, s["cell"]) for h in ("#", "Event", "Source", "When", "Hash")]
    ]
    for ev in events:
        rows.append(
            [
                Paragraph(str(ev.seq), s["cell"]),
                Paragraph(escape(str(ev.event_type)), s["cell"]),
                Paragraph(escape(str(ev.trigger_source)), s["cell"]),
                Paragraph(escape(to_iso(ev.created_at) or ""), s["cell"]),
                Paragraph(escape(ev.event_hash[:16]), s["mono"]),
            ]
        )
    story.append(_table(rows, [0.4 * inch, 1.5 * inch, 1.3 * inch, 2.3 * inch, 1.5 * inch]))

    story.append(Spacer(1, 20))
    story.append(HRFlowable(width="100%", thickness=0.5, color=BORDER, spaceAfter=6))
    story.append(
        Paragraph(
            "Each event hash commits to its content and to the previous hash. Recompute the chain "
            "from the JSON export to check this document.",
            s["footer"],
        )
    )

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.6 * inch,
        bottomMargin=0.6 * inch,
        title=f"Proof {task.key}",
        author=f"docket {__version__}",
    )
    doc.build(story)
    pdf_bytes = buffer.getvalue()
    buffer.close()

    return ExportArtifact(
        content=pdf_bytes,
        media_type="application/pdf",
        filename=f"proof-{task.key}-{packet.id[:8]}.pdf",
    )


_RENDERERS = {"pdf": render_pdf, "json": render_json}


def render(
    fmt: str, packet: ProofPacket, task: Task, events: Sequence[Event], verification: ChainVerification
) -> ExportArtifact:
    renderer = _RENDERERS.get(fmt)
    if renderer is None:
        raise ValueError(f"unsupported export format: {fmt}")
    return renderer(packet, task, events, verification)
