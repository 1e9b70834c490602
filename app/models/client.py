from sqlalchemy import Column, String, Text, Boolean
from .base import BaseModel


class Client(BaseModel):
    __tablename__ = "clients"

    name = Column(String(255), nullable=False, index=True)
    industry = Column(String(100), nullable=True, index=True)
    website = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Contact
    contact_person = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)

    # Location
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
