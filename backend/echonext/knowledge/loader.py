"""Document text extraction for knowledge base builds.

Reads TXT, TEX, PDF, and DOCX files from a source folder and returns
their combined raw text for chunking.
"""

import logging
import re
from pathlib import Path

try:
    from pypdf import PdfReader
except ImportError:
    PdfReader = None  # type: ignore[assignment, misc]

try:
    from docx import Document as DocxDocument
except ImportError:
    DocxDocument = None  # type: ignore[assignment, misc]

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".txt", ".tex", ".pdf", ".docx")

_LATEX_COMMAND = re.compile(r"\\[a-zA-Z]+(\{[^}]*\}|\[[^\]]*\])?")
_LATEX_BRACES = re.compile(r"[{}]")
_LATEX_INLINE_MATH = re.compile(r"\$.+?\$")
_LATEX_DISPLAY_MATH = re.compile(r"\$\$.+?\$\$", re.DOTALL)


def read_knowledge_data(input_folder: Path) -> str:
    """Read all supported files directly inside a folder.

    Subdirectories are skipped. Files that fail to parse are logged and
    skipped so one broken document does not abort the build.

    Args:
        input_folder: Folder containing source documents.

    Returns:
        Combined text of all readable documents, newline separated.
    """
    combined: list[str] = []
    file_count = 0

    for entry in sorted(input_folder.iterdir()):
        if entry.is_dir():
            logger.info(f"Skipping subdirectory: {entry.name} (non-recursive mode)")
            continue

        suffix = entry.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            continue

        try:
            logger.info(f"Reading {suffix[1:].upper()}: {entry.name}")
            content = extract_text(entry)
            file_count += 1
        except Exception as e:
            logger.error(f"Error reading {entry.name}: {e}")
            continue

        if content and content.strip():
            combined.append(content)

    logger.info(f"Total files read: {file_count}")
    return "".join(f"\n{text}" for text in combined)


def extract_text(file_path: Path) -> str:
    """Extract raw text from a single document.

    Args:
        file_path: Path to a .txt, .tex, .pdf, or .docx file.

    Returns:
        Extracted text.

    Raises:
        ValueError: If the extension is not supported.
        ImportError: If the parser library for the format is missing.
    """
    suffix = file_path.suffix.lower()
    if suffix == ".txt":
        return file_path.read_text(encoding="utf-8")
    if suffix == ".tex":
        return strip_latex(file_path.read_text(encoding="utf-8"))
    if suffix == ".pdf":
        return _read_pdf(file_path)
    if suffix == ".docx":
        return _read_docx(file_path)
    raise ValueError(f"Unsupported document type: {file_path.name}")


def strip_latex(content: str) -> str:
    """Remove LaTeX commands, braces, and math from TeX source."""
    content = _LATEX_COMMAND.sub("", content)
    content = _LATEX_BRACES.sub("", content)
    content = _LATEX_DISPLAY_MATH.sub("", content)
    return _LATEX_INLINE_MATH.sub("", content)


def _read_pdf(file_path: Path) -> str:
    if PdfReader is None:
        raise ImportError(
            "pypdf is required for PDF processing. Install with: pip install pypdf"
        )

    reader = PdfReader(str(file_path))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages)


def _read_docx(file_path: Path) -> str:
    if DocxDocument is None:
        raise ImportError(
            "python-docx is required for DOCX processing. "
            "Install with: pip install python-docx"
        )

    document = DocxDocument(str(file_path))
    return "\n".join(paragraph.text for paragraph in document.paragraphs)
