from sqlalchemy import Column, Integer, String
from listings.models.base import Base

class Counter(Base):
    """Named monotonic sequence; ``propertyId`` backs the public property ids."""
    __tablename__ = "counters"
    name = Column(String(64), primary_key=True)
    sequence = Column(Integer, nullable=False, default=0)
