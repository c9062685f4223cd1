from __future__ import annotations
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from logging import getLogger

logger = getLogger(__name__)


SUPPORTED_EXTENSIONS: Tuple[str, ...] = (".pdf", ".docx", ".xlsx", ".pptx", ".txt", ".csv", ".md")

DEFAULT_SMART_MAX_CHARS = 50_000
# 先頭/中盤/終盤の3分割サンプリングに必要な最低文字数
MIN_SAMPLE_CHARS = 300

SAMPLE_SEPARATOR_MIDDLE = "\n\n... [middle section] ...\n\n"
SAMPLE_SEPARATOR_LATER = "\n\n... [later section] ...\n\n"


class DocumentReadError(Exception):
    pass


# -----------------------
# Model
# -----------------------


@dataclass(frozen=True)
class DocumentPage:
    number: int
    text: str
    # xlsxのシート名など
    name: str = ""

    @property
    def lines(self) -> List[str]:
        return self.text.splitlines()


@dataclass(frozen=True)
class Document:
    path: str
    pages: Tuple[DocumentPage, ...]
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def content(self) -> str:
        return "\n".join(p.text for p in self.pages)


def _payload(obj: Any) -> dict[str, Any]:
    # error_message / suggestion は空なら出さない
    out = asdict(obj)
    for key in ("error_message", "suggestion"):
        if key in out and not out[key]:
            out.pop(key)
    return out


@dataclass(frozen=True)
class DocumentInfo:
    file_path: str = ""
    file_type: str = ""
    file_size: str = ""
    total_pages: int = 0
    total_sheets: int = 0
    sheet_names: Tuple[str, ...] = ()
    estimated_size: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = _payload(self)
        out["sheet_names"] = list(self.sheet_names)
        return out


@dataclass(frozen=True)
class PageDetail:
    page_number: int
    page_name: str
    line_count: int


@dataclass(frozen=True)
class PageRangeRead:
    content: str = ""
    pages: Tuple[PageDetail, ...] = ()
    total_pages: int = 0
    read_pages: int = 0
    metadata: Dict[str, str] = field(default_factory=dict)
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = _payload(self)
        out["pages"] = [asdict(p) for p in self.pages]
        return out


@dataclass(frozen=True)
class LineRangeRead:
    content: str = ""
    total_lines: int = 0
    read_lines: int = 0
    page_index: int = 0
    metadata: Dict[str, str] = field(default_factory=dict)
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _payload(self)


@dataclass(frozen=True)
class SmartRead:
    content: str = ""
    is_truncated: bool = False
    original_size: int = 0
    returned_size: int = 0
    strategy: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)
    error_message: str = ""
    suggestion: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _payload(self)


# -----------------------
# Format loaders
# -----------------------


def _meta(**items: Any) -> Dict[str, str]:
    return {k: str(v) for k, v in items.items() if v not in (None, "")}


def _load_pdf(path: str) -> Tuple[List[DocumentPage], Dict[str, str]]:
    import pypdf

    reader = pypdf.PdfReader(path)
    pages = [
        DocumentPage(number=i, text=page.extract_text() or "")
        for i, page in enumerate(reader.pages)
    ]
    info = reader.metadata
    meta = _meta(
        title=info.title if info else None,
        author=info.author if info else None,
        pages=len(pages),
    )
    return pages, meta


def _load_docx(path: str) -> Tuple[List[DocumentPage], Dict[str, str]]:
    import docx

    d = docx.Document(path)
    lines = [p.text for p in d.paragraphs]
    for table in d.tables:
        for row in table.rows:
            lines.append("\t".join(cell.text for cell in row.cells))
    props = d.core_properties
    # docxにはページの概念がないので1ページ扱い
    return [DocumentPage(number=0, text="\n".join(lines))], _meta(
        title=props.title, author=props.author
    )


def _load_xlsx(path: str) -> Tuple[List[DocumentPage], Dict[str, str]]:
    import openpyxl

    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        pages = []
        for i, ws in enumerate(wb.worksheets):
            rows = []
            for row in ws.iter_rows(values_only=True):
                cells = ["" if v is None else str(v) for v in row]
                if any(cells):
                    rows.append("\t".join(cells).rstrip("\t"))
            pages.append(DocumentPage(number=i, text="\n".join(rows), name=ws.title))
        meta = _meta(
            title=wb.properties.title,
            author=wb.properties.creator,
            sheets=",".join(wb.sheetnames),
        )
    finally:
        wb.close()
    return pages, meta


def _load_pptx(path: str) -> Tuple[List[DocumentPage], Dict[str, str]]:
    import pptx

    prs = pptx.Presentation(path)
    pages = []
    for i, slide in enumerate(prs.slides):
        texts = [
            shape.text_frame.text
            for shape in slide.shapes
            if shape.has_text_frame and shape.text_frame.text
        ]
        pages.append(DocumentPage(number=i, text="\n".join(texts)))
    props = prs.core_properties
    return pages, _meta(title=props.title, author=props.author, slide_count=len(pages))


def _load_text(path: str) -> Tuple[List[DocumentPage], Dict[str, str]]:
    with open(path, "r", encoding="utf-8") as f:
        return [DocumentPage(number=0, text=f.read())], {}


LOADERS: Dict[str, Callable[[str], Tuple[List[DocumentPage], Dict[str, str]]]] = {
    ".pdf": _load_pdf,
    ".docx": _load_docx,
    ".xlsx": _load_xlsx,
    ".pptx": _load_pptx,
    ".txt": _load_text,
    ".csv": _load_text,
    ".md": _load_text,
}


# -----------------------
# Text helpers
# -----------------------


_MULTI_SPACE = re.compile(r"[ \t]{2,}")
_MULTI_BLANK = re.compile(r"\n{3,}")


def clean_text(text: str) -> str:
    lines = [_MULTI_SPACE.sub(" ", ln).strip() for ln in text.splitlines()]
    return _MULTI_BLANK.sub("\n\n", "\n".join(lines)).strip()


def format_file_size(size: int) -> str:
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} B"


def sample_content(content: str, max_chars: int) -> str:
    """
    先頭・中盤・終盤を同じ長さずつ切り出して区切り文字でつなぐ。
    """
    if len(content) <= max_chars:
        return content

    available = max_chars - len(SAMPLE_SEPARATOR_MIDDLE) - len(SAMPLE_SEPARATOR_LATER)
    if available < MIN_SAMPLE_CHARS:
        return content[:max_chars]

    part = available // 3
    mid = len(content) // 2
    head = content[:part]
    middle = content[mid - part // 2 : mid + part // 2]
    tail = content[len(content) - part :]
    out = f"{head}{SAMPLE_SEPARATOR_MIDDLE}{middle}{SAMPLE_SEPARATOR_LATER}{tail}"
    return out[:max_chars]


# -----------------------
# Reader
# -----------------------


class DocumentReader:
    """
    ローカルファイルを読む。root を指定した場合はその配下のパスだけ許可。
    例外は DocumentReadError に揃え、tool 側で error_message に変換する。
    """

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = os.path.realpath(root) if root else None

    def resolve(self, path: str) -> str:
        if not path:
            raise DocumentReadError("file_path is required")
        full = os.path.realpath(os.path.expanduser(path))
        if self.root and os.path.commonpath([self.root, full]) != self.root:
            raise DocumentReadError(f"path is outside the document root: {path}")
        return full

    def read(self, path: str, *, clean: bool = False) -> Document:
        full = self.resolve(path)
        ext = os.path.splitext(full)[1].lower()
        loader = LOADERS.get(ext)
        if loader is None:
            raise DocumentReadError(
                f"unsupported file type: {ext or '(none)'} "
                f"(supported: {', '.join(SUPPORTED_EXTENSIONS)})"
            )
        try:
            pages, meta = loader(full)
        except Exception as e:
            # 各パーサの例外型はバラバラなのでまとめて包む
            raise DocumentReadError(str(e) or type(e).__name__) from e
        if clean:
            pages = [DocumentPage(p.number, clean_text(p.text), p.name) for p in pages]
        logger.debug(f"read {full}: {len(pages)} page(s)")
        return Document(path=full, pages=tuple(pages), metadata=meta)

    # -----------------------
    # Operations
    # -----------------------

    def info(self, path: str) -> DocumentInfo:
        try:
            full = self.resolve(path)
            size = os.stat(full).st_size
        except (DocumentReadError, OSError) as e:
            return DocumentInfo(error_message=f"File access failed: {e}")

        ext = os.path.splitext(full)[1].lower()
        base = DocumentInfo(
            file_path=path,
            file_type=ext.lstrip(".").upper(),
            file_size=format_file_size(size),
        )
        try:
            doc = self.read(path)
        except DocumentReadError as e:
            return DocumentInfo(
                file_path=base.file_path,
                file_type=base.file_type,
                file_size=base.file_size,
                error_message=f"Failed to read document: {e}",
            )

        sheets: Tuple[str, ...] = ()
        total_pages = 0
        if ext in (".pdf", ".pptx"):
            total_pages = len(doc.pages)
        elif ext == ".xlsx":
            sheets = tuple(p.name for p in doc.pages)
        return DocumentInfo(
            file_path=base.file_path,
            file_type=base.file_type,
            file_size=base.file_size,
            total_pages=total_pages,
            total_sheets=len(sheets),
            sheet_names=sheets,
            estimated_size=f"Approx {len(doc.content)} characters",
            metadata=doc.metadata,
        )

    def read_pages(self, path: str, start_page: int = 0, end_page: int = -1) -> PageRangeRead:
        """
        start_page..end_page（両端含む, 0-based）。end_page < 0 は最後まで。
        """
        try:
            doc = self.read(path)
        except DocumentReadError as e:
            return PageRangeRead(error_message=f"Failed to read document: {e}")

        total = len(doc.pages)
        start = max(start_page, 0)
        end = total - 1 if end_page < 0 else min(end_page, total - 1)
        if start >= total or start > end:
            return PageRangeRead(
                total_pages=total,
                metadata=doc.metadata,
                error_message=f"Failed to read document: page range {start_page}..{end_page} "
                f"is out of bounds (total pages: {total})",
            )

        selected = doc.pages[start : end + 1]
        return PageRangeRead(
            content="\n".join(p.text for p in selected),
            pages=tuple(PageDetail(p.number, p.name, len(p.lines)) for p in selected),
            total_pages=total,
            read_pages=len(selected),
            metadata=doc.metadata,
        )

    def read_lines(
        self, path: str, start_line: int = 0, end_line: int = -1, page_index: int = -1
    ) -> LineRangeRead:
        """
        1ページ内の行範囲（両端含む, 0-based）。page_index < 0 は先頭ページ。
        """
        page_index = max(page_index, 0)
        try:
            doc = self.read(path)
        except DocumentReadError as e:
            return LineRangeRead(error_message=f"Failed to read document: {e}")

        if page_index >= len(doc.pages):
            return LineRangeRead(
                page_index=page_index,
                metadata=doc.metadata,
                error_message=f"Failed to read document: page index {page_index} "
                f"is out of bounds (total pages: {len(doc.pages)})",
            )

        lines = doc.pages[page_index].lines
        start = max(start_line, 0)
        stop = len(lines) if end_line < 0 else end_line + 1
        selected = lines[start:stop]
        return LineRangeRead(
            content="\n".join(selected),
            total_lines=len(lines),
            read_lines=len(selected),
            page_index=page_index,
            metadata=doc.metadata,
        )

    def read_smart(
        self,
        path: str,
        max_chars: int = DEFAULT_SMART_MAX_CHARS,
        sample_mode: bool = False,
        clean_content: bool = True,
    ) -> SmartRead:
        if max_chars <= 0:
            max_chars = DEFAULT_SMART_MAX_CHARS
        try:
            doc = self.read(path, clean=clean_content)
        except DocumentReadError as e:
            return SmartRead(error_message=f"Failed to read document: {e}")

        content = doc.content
        size = len(content)
        if size <= max_chars:
            return SmartRead(
                content=content,
                original_size=size,
                returned_size=size,
                strategy="Complete read",
                metadata=doc.metadata,
            )

        if sample_mode:
            out = sample_content(content, max_chars)
            strategy = "Uniform sampling"
            suggestion = (
                f"Document is large ({size} characters), key parts have been sampled. "
                "Recommend using read_document_by_page or read_document_by_line "
                "to read specific parts as needed"
            )
        else:
            out = content[:max_chars]
            strategy = "Truncate from start"
            suggestion = (
                f"Document is large ({size} characters), only returning first "
                f"{max_chars} characters. Recommend using read_document_by_page or "
                "read_document_by_line to read as needed"
            )
        return SmartRead(
            content=out,
            is_truncated=True,
            original_size=size,
            returned_size=len(out),
            strategy=strategy,
            metadata=doc.metadata,
            suggestion=suggestion,
        )
