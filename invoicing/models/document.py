from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Literal

Alignment = Literal["left", "center", "right"]
FontWeight = Literal["normal", "bold"]


class DrawInstruction(BaseModel):
    text: str
    x: float
    y: float  # ligne de base, depuis le haut de la page
    font_size: float = 10
    font_weight: FontWeight = "normal"
    alignment: Alignment = "left"
    color: str = "#2c3e50"
    font: str = "Inter, sans-serif"


class ImageInstruction(BaseModel):
    src: str  # URL, chemin ou data URI
    x: float
    y: float  # haut de l'image
    width: float
    height: float


class TableCell(BaseModel):
    text: str  # plusieurs lignes séparées par "\n"
    x: float
    width: float
    alignment: Alignment = "left"

    @property
    def lines(self) -> List[str]:
        return self.text.split("\n")


class TableRow(BaseModel):
    y: float  # haut de la ligne
    height: float
    cells: List[TableCell] = Field(default_factory=list)
    font_size: float = 10
    font_weight: FontWeight = "normal"
    background: str | None = None
    color: str = "#2c3e50"


class Page(BaseModel):
    number: int
    width: float
    height: float
    top_margin: float
    bottom_margin: float
    instructions: List[DrawInstruction] = Field(default_factory=list)
    images: List[ImageInstruction] = Field(default_factory=list)
    rows: List[TableRow] = Field(default_factory=list)
    content_bottom: float = 0  # curseur final (plus bas point utilisé)

    @property
    def content_height(self) -> float:
        return max(0.0, self.content_bottom - self.top_margin)


class Document(BaseModel):
    invoice_number: str | None = None
    pages: List[Page] = Field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)
