"""
Quote documents: HTML layout, PDF/PNG rendering and asset storage.

``render_html`` lays a quote out as a Korean 견적서. ``ChromiumRenderer``
prints that HTML with a headless Chromium binary; ``AssetStore`` writes the
resulting bytes under the exports directory and hands back locators.
"""

import asyncio
import html
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Tuple

from .models import Quote, OptionLine
from .error_handler import CollaboratorError
from .logging_conf import get_logger

logger = get_logger(__name__)

OPTION_SECTIONS = [
    ("installed", "장착 옵션"),
    ("paid", "유상 옵션"),
    ("extra", "추가 옵션"),
]

PAGE_WIDTH = 1240
PAGE_HEIGHT = 1754

_STYLE = """
body{font-family:Pretendard,Arial,sans-serif;font-size:12px;color:#111}
h1{font-size:18px;margin:0 0 8px}
table{width:100%;border-collapse:collapse;margin:8px 0}
th,td{border:1px solid #bbb;padding:6px;text-align:left}
.hdr{margin-bottom:6px}
.right{text-align:right}
"""


@dataclass
class RenderedDocument:
    """Printable document bytes produced by a renderer."""
    document_bytes: bytes
    image_bytes: bytes


class Renderer(Protocol):
    async def render(self, quote: Quote) -> RenderedDocument:
        ...


def money(amount: Optional[int]) -> str:
    return f"{amount or 0:,}"


def _e(value) -> str:
    return html.escape(str(value if value is not None else ""))


def _option_table(title: str, options: Iterable[OptionLine]) -> str:
    rows = "".join(
        f"<tr><td>{_e(option.description)}</td><td class=\"right\">{money(option.price)}</td></tr>"
        for option in options
    )
    return (
        f"<h3>{title}</h3>\n"
        "<table><thead><tr><th>옵션</th><th class=\"right\">금액</th></tr></thead>\n"
        f"<tbody>{rows}</tbody></table>\n"
    )


def render_html(quote: Quote) -> str:
    """Build the printable HTML document for a quote. Every value is escaped."""
    item_rows = "".join(
        f"<tr><td>{item.qty}</td><td>{_e(item.label)}</td>"
        f"<td class=\"right\">{money(item.unit_price)}</td><td class=\"right\">{money(item.total)}</td></tr>"
        for item in quote.items
    )
    options = "".join(
        _option_table(title, getattr(quote, bucket))
        for bucket, title in OPTION_SECTIONS
        if getattr(quote, bucket)
    )
    notes = f"<div>비고: {_e(quote.notes)}</div>\n" if quote.notes else ""

    return (
        "<!doctype html><html><head><meta charset=\"utf-8\" />\n"
        f"<style>{_STYLE}</style></head><body>\n"
        "<h1>견적서</h1>\n"
        f"<div class=\"hdr\">견적번호: <b>{_e(quote.quote_no)}</b> | 일자: {quote.last_updated.date().isoformat()}</div>\n"
        f"<div class=\"hdr\">견적대상: {_e(quote.client)} | 모델: {_e(quote.model.raw or quote.title)}"
        f" | 담당: {_e(quote.owner)}</div>\n"
        f"<div class=\"hdr\">결제조건: {_e(quote.pay_terms)} | 납기: {_e(quote.delivery_terms)}</div>\n"
        "<h3>본 품목</h3>\n"
        "<table><thead><tr><th>수량</th><th>품목</th><th class=\"right\">단가</th><th class=\"right\">금액</th></tr></thead>\n"
        f"<tbody>{item_rows}</tbody></table>\n"
        f"{options}"
        f"<div class=\"right\">공급가액: {money(quote.subtotal)} 원 | 부가세: {money(quote.vat)} 원</div>\n"
        f"<h2 class=\"right\">합계 금액: {money(quote.grand_total)} 원</h2>\n"
        f"{notes}"
        "</body></html>"
    )


class ChromiumRenderer:
    """Renders quotes to PDF and PNG with a headless Chromium binary."""

    def __init__(self, browser_path: str = "chromium"):
        self.browser_path = browser_path

    async def _run(self, args: List[str]) -> None:
        cmd = [
            self.browser_path,
            "--headless",
            "--disable-gpu",
            "--no-sandbox",
            "--hide-scrollbars",
            *args,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise CollaboratorError("renderer", f"browser not found: {self.browser_path}", cause=e) from e

        try:
            _, stderr = await process.communicate()
        finally:
            # cancelled by a caller timeout
            if process.returncode is None:
                process.kill()
                await process.wait()

        if process.returncode != 0:
            error = stderr.decode("utf-8", errors="ignore").strip()
            logger.error("Browser rendering failed", returncode=process.returncode, stderr=error[:500])
            raise CollaboratorError("renderer", f"browser exited with {process.returncode}")

    async def render(self, quote: Quote) -> RenderedDocument:
        with tempfile.TemporaryDirectory(prefix="quote-render-") as tmp:
            workdir = Path(tmp)
            source = workdir / "quote.html"
            source.write_text(render_html(quote), encoding="utf-8")
            pdf_path = workdir / "quote.pdf"
            png_path = workdir / "quote.png"

            await self._run([f"--print-to-pdf={pdf_path}", "--no-pdf-header-footer", source.as_uri()])
            await self._run([
                f"--screenshot={png_path}",
                f"--window-size={PAGE_WIDTH},{PAGE_HEIGHT}",
                source.as_uri(),
            ])

            if not pdf_path.exists() or not png_path.exists():
                raise CollaboratorError("renderer", "browser produced no output")

            logger.debug("Quote rendered", quote_id=quote.id, pdf_bytes=pdf_path.stat().st_size)
            return RenderedDocument(document_bytes=pdf_path.read_bytes(), image_bytes=png_path.read_bytes())


def safe_filename_part(value: Optional[str]) -> str:
    return re.sub(r"[^\w가-힣.-]", "_", value or "")


def asset_basename(quote: Quote) -> str:
    """``{quoteNo}_{client}_{model}`` with unsafe characters replaced."""
    return "_".join(
        safe_filename_part(part) for part in (quote.quote_no, quote.client, quote.model.raw or quote.title)
    )


class AssetStore:
    """Writes rendered documents under a directory and returns file URIs."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def save(self, quote: Quote, document: RenderedDocument) -> Tuple[str, str]:
        self.root.mkdir(parents=True, exist_ok=True)
        base = asset_basename(quote)
        pdf_path = self.root / f"{base}.pdf"
        png_path = self.root / f"{base}.png"
        pdf_path.write_bytes(document.document_bytes)
        png_path.write_bytes(document.image_bytes)
        logger.info("Quote assets saved", quote_id=quote.id, pdf=str(pdf_path), png=str(png_path))
        return pdf_path.resolve().as_uri(), png_path.resolve().as_uri()
