from __future__ import annotations
import logging
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .invoice import Currency

logger = logging.getLogger(__name__)

DateFormat = Literal["MM/DD/YYYY", "DD/MM/YYYY", "YYYY-MM-DD"]

HEX_COLOR = r"^#[0-9a-fA-F]{6}$"

DEFAULT_PAYMENT_TERMS = (
    "Payment is due within 30 days of invoice date. "
    "Late payments may incur additional charges."
)


class Customization(BaseModel):
    """
    Options de présentation de la facture.
    - accepte camelCase (primaryColor) ou snake_case (primary_color)
    - accepte aussi l'ancien format imbriqué {"colors": {...}, "fonts": {...}}
    - une valeur invalide retombe sur sa valeur par défaut (jamais d'échec de rendu)
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    primary_color: str = Field(default="#ff6b35", pattern=HEX_COLOR)
    secondary_color: str = Field(default="#004e89", pattern=HEX_COLOR)
    text_color: str = Field(default="#2c3e50", pattern=HEX_COLOR)
    background_color: str = Field(default="#ffffff", pattern=HEX_COLOR)
    accent_color: str = Field(default="#fff3e0", pattern=HEX_COLOR)

    heading_font: str = "Poppins, sans-serif"
    body_font: str = "Inter, sans-serif"

    show_logo: bool = False
    company_logo: str = ""  # URL, chemin ou data URI ; affiché si show_logo
    show_company_details: bool = True
    show_payment_terms: bool = True

    payment_terms_text: str = DEFAULT_PAYMENT_TERMS
    footer_text: str = "Thank you for choosing our services!"
    terms_and_conditions: str = ""

    # None -> devise de la facture
    currency: Optional[Currency] = None
    date_format: DateFormat = "MM/DD/YYYY"

    @model_validator(mode="before")
    @classmethod
    def _flatten_legacy(cls, data: Any) -> Any:
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            return {}
        data = dict(data)
        colors = data.pop("colors", None)
        if isinstance(colors, Mapping):
            for key in ("primary", "secondary", "text", "background", "accent"):
                if key in colors:
                    data.setdefault(f"{key}Color", colors[key])
        fonts = data.pop("fonts", None)
        if isinstance(fonts, Mapping):
            for key in ("heading", "body"):
                if key in fonts:
                    data.setdefault(f"{key}Font", fonts[key])
        return data

    @field_validator("*", mode="wrap")
    @classmethod
    def _fallback_to_default(cls, value: Any, handler, info) -> Any:
        try:
            return handler(value)
        except ValidationError:
            default = cls.model_fields[info.field_name].get_default(call_default_factory=True)
            logger.warning("Option %s invalide (%r), valeur par défaut utilisée", info.field_name, value)
            return default

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "Customization":
        return cls.model_validate(options or {})

    def as_options(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
