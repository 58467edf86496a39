# Stamps collected signatures onto the original PDF with pypdf + reportlab.
# Runs inline from the signing route, or from the Celery task in tasks.py.

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader
from io import BytesIO
from pypdf import PdfReader, PdfWriter
import json

from .utils import b64png_to_bytes, sha256_bytes, utcnow

SIGNATURE_WIDTH = 200.0
SIGNATURE_HEIGHT = 80.0


def placement_to_points(x_pct: float, y_pct: float, page_w: float, page_h: float,
                        w: float = SIGNATURE_WIDTH, h: float = SIGNATURE_HEIGHT):
    """Convert a top-left percentage placement into a PDF lower-left origin box."""
    w = min(w, page_w)
    h = min(h, page_h)
    x = page_w * x_pct / 100.0
    top = page_h * y_pct / 100.0
    x = max(0.0, min(x, page_w - w))
    y = page_h - top - h
    y = max(0.0, min(y, page_h - h))
    return x, y, w, h


def _overlay_page(width, height, draw_ops):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height))
    for op in draw_ops:
        png = ImageReader(BytesIO(op["png"]))
        c.drawImage(png, op["x"], op["y"], width=op["w"], height=op["h"], mask='auto')
        if op.get("caption"):
            c.setFont("Helvetica", 7)
            c.drawString(op["x"], max(0.0, op["y"] - 9), op["caption"][:80])
    c.showPage()
    c.save()
    return buf.getvalue()


def _append_certificate(writer: PdfWriter, audit: dict, signers: list):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.setFont("Helvetica-Bold", 14)
    c.drawString(72, 750, "Certificate of Completion")
    c.setFont("Helvetica", 10)
    y = 720
    lines = [f"{k}: {v}" for k, v in audit.items()]
    lines.append("")
    for idx, s in enumerate(signers, start=1):
        lines.append(f"{idx}. {s['name']} <{s['email']}> signed {s.get('signed_at') or '-'} from {s.get('ip') or 'unknown'}")
    for line in lines:
        c.drawString(72, y, line[:95])
        y -= 14
        if y < 72:
            c.showPage(); c.setFont("Helvetica", 10); y = 750
    c.showPage(); c.save()
    buf.seek(0)
    for page in PdfReader(buf).pages:
        writer.add_page(page)


def seal_pdf(original_pdf_bytes: bytes, document_id: int, signatures: list):
    """Return (final_pdf, audit_json, sha256_final).

    ``signatures`` holds one dict per signer in signing order:
    ``{"name", "email", "signature_data", "x", "y", "page", "signed_at", "ip"}``
    with x/y as page percentages and page 1-based.
    """
    reader = PdfReader(BytesIO(original_pdf_bytes))
    writer = PdfWriter()
    num_pages = len(reader.pages)
    for page in reader.pages:
        writer.add_page(page)

    draw_map = {}  # page_index -> [ops]
    for sig in signatures:
        if not sig.get("signature_data"):
            continue
        pidx = max(0, min(num_pages - 1, int(sig.get("page") or 1) - 1))
        page = reader.pages[pidx]
        width = float(page.mediabox.width)
        height = float(page.mediabox.height)
        x, y, w, h = placement_to_points(float(sig.get("x") or 0), float(sig.get("y") or 0), width, height)
        draw_map.setdefault(pidx, []).append({
            "x": x, "y": y, "w": w, "h": h,
            "png": b64png_to_bytes(sig["signature_data"]),
            "caption": f"{sig.get('name', '')} {sig.get('signed_at') or ''}".strip(),
        })

    for pidx, ops in draw_map.items():
        page = reader.pages[pidx]
        overlay_pdf = _overlay_page(float(page.mediabox.width), float(page.mediabox.height), ops)
        overlay_reader = PdfReader(BytesIO(overlay_pdf))
        writer.pages[pidx].merge_page(overlay_reader.pages[0])

    audit = {
        "document_id": document_id,
        "sha256_original": sha256_bytes(original_pdf_bytes),
        "sealed_at": utcnow().isoformat(),
        "signer_count": len(signatures),
    }
    _append_certificate(writer, audit, signatures)

    out_buf = BytesIO()
    writer.write(out_buf)
    final_bytes = out_buf.getvalue()
    sha_final = sha256_bytes(final_bytes)
    audit_json = json.dumps({**audit, "sha256_final": sha_final, "signers": signatures_summary(signatures)}, default=str)
    return final_bytes, audit_json, sha_final


def signatures_summary(signatures: list) -> list:
    return [
        {k: s.get(k) for k in ("name", "email", "page", "x", "y", "signed_at", "ip")}
        for s in signatures
    ]
