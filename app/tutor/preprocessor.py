"""File Preprocessor: turns attached files into prompt-ready content.

Each attachment becomes one of:
  - TEXT: extracted text fragment (PDF text, decoded plain text, OCR output)
  - INLINE: base64 payload + mime type for providers with native vision
  - NOTE: a descriptive note when the file could not be processed

Files are processed independently. A failure on one file never aborts the
others or the request; it degrades to a NOTE that is appended to the prompt.

PDF parsing (pypdf) and OCR (pytesseract) are blocking, so they run in a
worker thread under a time budget. Tesseract runs as a subprocess and is
killed at its deadline. pypdf cannot be interrupted: on timeout the request
stops waiting but the worker thread finishes its parse in the background.
The page cap bounds how long that can take.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import re

import pytesseract
from PIL import Image
from pypdf import PdfReader

from app.tutor.errors import PreprocessingDegraded
from app.tutor.types import AttachedFile, AttachmentKind, ProcessedAttachment, ProviderCapabilities

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:([^;,]+)?(?:;[^,]*)?;base64,(.*)$", re.DOTALL)

# PDFs with less extracted text than this are most likely scanned images
_PDF_MIN_CHARS = 11


def decode_content(file: AttachedFile) -> tuple[bytes, str]:
    """Decode an attachment's base64 payload.

    Returns the raw bytes and the effective mime type (a data URL's own mime
    type wins over the declared one).
    """
    content = (file.base64_content or "").strip()
    if not content:
        raise PreprocessingDegraded("file has no content")

    mime_type = file.mime_type
    match = _DATA_URL.match(content)
    if match:
        mime_type = match.group(1) or mime_type
        content = match.group(2)

    try:
        data = base64.b64decode(content, validate=False)
    except (binascii.Error, ValueError) as e:
        raise PreprocessingDegraded(f"invalid base64 content: {e}") from e
    if not data:
        raise PreprocessingDegraded("file has no content")
    return data, mime_type


def detect_kind(file: AttachedFile) -> str:
    """Classify an attachment as image, pdf, text or unsupported."""
    mime = (file.mime_type or "").lower()
    if "image" in mime:
        return "image"
    if "pdf" in mime:
        return "pdf"
    if "text" in mime or "plain" in mime:
        return "text"
    # Browsers often send PDFs as application/octet-stream
    if file.name.lower().endswith(".pdf"):
        return "pdf"
    return "unsupported"


def configure_tesseract(cmd: str) -> None:
    """Point pytesseract at a specific tesseract binary. Called once at startup."""
    if cmd:
        pytesseract.pytesseract.tesseract_cmd = cmd
        logger.info("Using tesseract binary at %s", cmd)


def truncate(text: str, limit: int) -> tuple[str, bool]:
    if limit > 0 and len(text) > limit:
        return text[:limit], True
    return text, False


def _extract_pdf_text(data: bytes, max_pages: int = 0) -> tuple[str, int]:
    """Extract page text from a PDF. Returns (text, page_count).

    Only the first ``max_pages`` pages are read (0 reads all). The page count
    is always the full document's.
    """
    reader = PdfReader(io.BytesIO(data))
    pages = reader.pages[:max_pages] if max_pages > 0 else reader.pages
    parts = [(page.extract_text() or "") for page in pages]
    return "\n".join(parts).strip(), len(reader.pages)


def _run_ocr(data: bytes, timeout: float) -> str:
    """Run Tesseract OCR over an image. Tesseract is killed after ``timeout``."""
    with Image.open(io.BytesIO(data)) as image:
        return pytesseract.image_to_string(image, lang="eng", timeout=timeout).strip()


class FilePreprocessor:
    """Converts attachments into TEXT / INLINE / NOTE fragments for one provider."""

    def __init__(
        self,
        pdf_max_chars: int = 50_000,
        text_max_chars: int = 3_000,
        ocr_max_chars: int = 3_000,
        ocr_min_chars: int = 6,
        ocr_timeout_seconds: float = 20.0,
        pdf_timeout_seconds: float = 30.0,
        pdf_max_pages: int = 200,
    ):
        self.pdf_max_chars = pdf_max_chars
        self.text_max_chars = text_max_chars
        self.ocr_max_chars = ocr_max_chars
        self.ocr_min_chars = ocr_min_chars
        self.ocr_timeout_seconds = ocr_timeout_seconds
        self.pdf_timeout_seconds = pdf_timeout_seconds
        self.pdf_max_pages = pdf_max_pages

    @classmethod
    def from_settings(cls, settings) -> FilePreprocessor:
        return cls(
            pdf_max_chars=settings.pdf_max_chars,
            text_max_chars=settings.text_max_chars,
            ocr_max_chars=settings.ocr_max_chars,
            ocr_min_chars=settings.ocr_min_chars,
            ocr_timeout_seconds=settings.ocr_timeout_seconds,
            pdf_timeout_seconds=settings.pdf_timeout_seconds,
            pdf_max_pages=settings.pdf_max_pages,
        )

    async def process_all(
        self,
        files: tuple[AttachedFile, ...] | list[AttachedFile],
        capabilities: ProviderCapabilities,
    ) -> list[ProcessedAttachment]:
        return [await self.process(f, capabilities) for f in files]

    async def process(self, file: AttachedFile, capabilities: ProviderCapabilities) -> ProcessedAttachment:
        """Process one attachment. Never raises; failures become NOTE fragments."""
        kind = detect_kind(file)
        try:
            if kind == "image":
                return await self._process_image(file, capabilities)
            if kind == "pdf":
                return await self._process_pdf(file, capabilities)
            if kind == "text":
                return self._process_text(file)
            return self._note(
                file,
                f"[UNSUPPORTED FILE TYPE: {file.mime_type or 'unknown'}] {file.name}\n"
                "Please convert it to a supported format (PDF, image or plain text) or describe the content.",
            )
        except PreprocessingDegraded as e:
            logger.warning("Attachment %s degraded to note: %s", file.name, e)
            return self._note(file, f'Could not process "{file.name}": {e}')

    # -- images ---------------------------------------------------------------

    async def _process_image(self, file: AttachedFile, capabilities: ProviderCapabilities) -> ProcessedAttachment:
        data, mime_type = decode_content(file)

        if capabilities.supports_images:
            return ProcessedAttachment(
                kind=AttachmentKind.INLINE,
                file_name=file.name,
                text=f"Image attached: {file.name}",
                mime_type=mime_type or "image/png",
                data=base64.b64encode(data).decode("ascii"),
            )

        try:
            extracted = await asyncio.wait_for(
                asyncio.to_thread(_run_ocr, data, self.ocr_timeout_seconds),
                timeout=self.ocr_timeout_seconds + 1,
            )
        except asyncio.TimeoutError as e:
            raise PreprocessingDegraded(f"OCR exceeded {self.ocr_timeout_seconds:.0f}s") from e
        except Exception as e:
            raise PreprocessingDegraded(f"OCR extraction failed: {e}") from e

        if len(extracted) < self.ocr_min_chars:
            logger.info("OCR found minimal text in %s (%d chars)", file.name, len(extracted))
            return self._note(
                file,
                f'IMAGE FILE: {file.name}\nOCR completed but found minimal readable text: "{extracted}"\n'
                "The image may contain:\n"
                "- Handwritten content (harder to read)\n"
                "- Low quality/blurry text\n"
                "- Non-text content (diagrams, graphs)\n"
                "Please ask the user to describe what the image shows.",
            )

        body, was_truncated = truncate(extracted, self.ocr_max_chars)
        fragment = f'IMAGE FILE: {file.name}\nOCR TEXT EXTRACTED FROM IMAGE:\n"{body}"\n'
        if was_truncated:
            fragment += f"[Text truncated - showing first {self.ocr_max_chars} of {len(extracted)} characters]\n"
        fragment += "INSTRUCTIONS: Solve the problem or answer the question shown in the extracted text above."
        logger.info("OCR extracted %d characters from %s", len(extracted), file.name)
        return ProcessedAttachment(kind=AttachmentKind.TEXT, file_name=file.name, text=fragment)

    # -- PDFs -----------------------------------------------------------------

    async def _process_pdf(self, file: AttachedFile, capabilities: ProviderCapabilities) -> ProcessedAttachment:
        if not capabilities.supports_pdfs:
            return self._note(
                file,
                f"[DOCUMENT FILE UPLOADED] {file.name}\n"
                "This PDF cannot be read directly. Ask the user to paste the relevant text or problem statement.",
            )

        data, _ = decode_content(file)
        try:
            text, pages = await asyncio.wait_for(
                asyncio.to_thread(_extract_pdf_text, data, self.pdf_max_pages),
                timeout=self.pdf_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PreprocessingDegraded(f"PDF parsing exceeded {self.pdf_timeout_seconds:.0f}s") from e
        except Exception as e:
            raise PreprocessingDegraded(f"PDF parsing failed: {e}") from e

        if len(text) < _PDF_MIN_CHARS:
            return self._note(
                file,
                f'PDF file "{file.name}" was uploaded but text extraction yielded minimal content. '
                "The PDF may contain images or scanned content.",
            )

        body, was_truncated = truncate(text, self.pdf_max_chars)
        fragment = f"PDF FILE: {file.name}\nPages: {pages}\n"
        if was_truncated:
            fragment += (
                f"Note: PDF is large [truncated], showing first {self.pdf_max_chars} "
                f"of {len(text)} characters\n"
            )
            logger.info("PDF text truncated from %d to %d characters", len(text), self.pdf_max_chars)
        fragment += f"Content:\n{body}\n[End of PDF content]"
        logger.info("Extracted %d characters from PDF %s (%d pages)", len(text), file.name, pages)
        return ProcessedAttachment(kind=AttachmentKind.TEXT, file_name=file.name, text=fragment)

    # -- plain text -----------------------------------------------------------

    def _process_text(self, file: AttachedFile) -> ProcessedAttachment:
        data, _ = decode_content(file)
        text = data.decode("utf-8", errors="replace")
        body, was_truncated = truncate(text, self.text_max_chars)
        fragment = f"FILE: {file.name}\nTEXT CONTENT:\n{body}"
        if was_truncated:
            fragment += f"\n[Content truncated - showing first {self.text_max_chars} characters of {len(text)} total]"
        return ProcessedAttachment(kind=AttachmentKind.TEXT, file_name=file.name, text=fragment)

    @staticmethod
    def _note(file: AttachedFile, text: str) -> ProcessedAttachment:
        return ProcessedAttachment(kind=AttachmentKind.NOTE, file_name=file.name, text=text)
