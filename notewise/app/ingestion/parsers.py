from __future__ import annotations


class ParsingError(Exception):
    pass


def parse_pdf_bytes(file_bytes: bytes) -> str:
    try:
        import fitz
    except Exception as exc:  # pragma: no cover - optional dependency path
        raise ParsingError("PyMuPDF is required for PDF parsing") from exc

    if not file_bytes:
        raise ParsingError("PDF file is empty")

    try:
        with fitz.open(stream=file_bytes, filetype="pdf") as document:
            pages = [page.get_text("text").strip() for page in document]
    except Exception as exc:
        raise ParsingError("Unable to parse PDF file") from exc

    return "\n\n".join(text for text in pages if text)
