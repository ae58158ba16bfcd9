from __future__ import annotations

from io import BytesIO
from pathlib import Path
import textwrap
from typing import Protocol

from PIL import Image, ImageDraw, ImageFont

from template_worker.errors import PermanentCollaboratorError

IMAGE_SUFFIXES = frozenset({".png", ".jpg", ".jpeg", ".webp"})


class AssetCatalog:
    def __init__(self, asset_dir: Path) -> None:
        self._asset_dir = asset_dir

    def _files(self) -> dict[str, Path]:
        if not self._asset_dir.is_dir():
            return {}
        files: dict[str, Path] = {}
        for path in sorted(self._asset_dir.iterdir()):
            if path.is_file() and path.suffix.lower() in IMAGE_SUFFIXES:
                files.setdefault(path.stem, path)
        return files

    def names(self) -> list[str]:
        return list(self._files())

    def path(self, name: str) -> Path | None:
        return self._files().get(name)


class TemplateRenderer(Protocol):
    def render(self, *, title: str, asset_name: str) -> bytes: ...


class PillowTemplateRenderer:
    def __init__(
        self,
        catalog: AssetCatalog,
        *,
        width: int = 1200,
        height: int = 630,
        background: tuple[int, int, int] = (245, 243, 238),
        text_color: tuple[int, int, int] = (33, 33, 33),
    ) -> None:
        self._catalog = catalog
        self._width = width
        self._height = height
        self._background = background
        self._text_color = text_color

    def render(self, *, title: str, asset_name: str) -> bytes:
        asset_path = self._catalog.path(asset_name)
        if asset_path is None:
            raise PermanentCollaboratorError(f"asset not found: {asset_name}")

        canvas = Image.new("RGB", (self._width, self._height), self._background)
        try:
            with Image.open(asset_path) as asset:
                artwork = asset.convert("RGBA")
        except OSError as exc:
            raise PermanentCollaboratorError(f"asset {asset_name} could not be read: {exc}") from exc

        # Artwork sits in the right half, title text in the left half.
        slot_width = self._width // 2
        slot_height = self._height - 80
        artwork.thumbnail((slot_width, slot_height))
        offset = (
            self._width - slot_width + (slot_width - artwork.width) // 2 - 40,
            (self._height - artwork.height) // 2,
        )
        canvas.paste(artwork, offset, artwork)

        draw = ImageDraw.Draw(canvas)
        font = ImageFont.load_default()
        draw.multiline_text(
            (60, self._height // 2 - 40),
            textwrap.fill(title, width=28),
            fill=self._text_color,
            font=font,
            spacing=8,
        )

        output = BytesIO()
        canvas.save(output, format="PNG")
        return output.getvalue()

