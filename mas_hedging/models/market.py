from datetime import datetime
from sqlalchemy import Column, DateTime, Float, Index, Integer, String

from mas_hedging.core.database import Base

METAL_TYPES = ("copper", "aluminum", "zinc", "nickel", "lead", "tin")


class MarketTick(Base):
    __tablename__ = "market_data"
    __table_args__ = (Index("ix_market_data_metal_timestamp", "metal_type", "timestamp"),)

    id = Column(Integer, primary_key=True, index=True)
    metal_type = Column(String(16), nullable=False)
    price = Column(Float, nullable=False)
    change_24h = Column(Float, nullable=True)
    change_percent = Column(Float, nullable=True)
    volume = Column(Float, nullable=True)
    market_cap = Column(Float, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
