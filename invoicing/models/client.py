from pydantic import BaseModel, EmailStr, Field
from .common import gen_id

class Address(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    country: str | None = None

    def lines(self) -> list[str]:
        city_line = ", ".join(p for p in [self.city, self.state] if p)
        if self.zip_code:
            city_line = f"{city_line} {self.zip_code}".strip()
        return [p for p in [self.street, city_line, self.country] if p]

class ContactPerson(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: EmailStr | None = None
    phone: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

class Client(BaseModel):
    id: str = Field(default_factory=gen_id)
    company_name: str
    contact_person: ContactPerson | None = None
    address: Address | None = None
    payment_terms: int = 30  # jours
    tax_number: str | None = None

class Project(BaseModel):
    id: str = Field(default_factory=gen_id)
    name: str
    client_id: str | None = None

class CompanyProfile(BaseModel):
    name: str = "Ma Société"
    address: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
