from datetime import datetime
from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from mas_hedging.core.database import Base

DIRECTIONS = ("long", "short")
POSITION_STATUSES = ("active", "closed", "expired")


class HedgingPosition(Base):
    __tablename__ = "hedging_positions"
    __table_args__ = (Index("ix_positions_user_status", "user_id", "status"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    metal_type = Column(String(16), nullable=False, index=True)
    direction = Column(String(8), nullable=False)  # long | short
    quantity = Column(Float, nullable=False)
    entry_price = Column(Float, nullable=False)
    target_price = Column(Float, nullable=True)
    stop_loss = Column(Float, nullable=True)
    status = Column(String(16), default="active", nullable=False)
    contract_date = Column(Date, nullable=False)
    expiry_date = Column(Date, nullable=False)
    # realized figures, written once by the close statement
    profit_loss = Column(Float, nullable=True)
    close_price = Column(Float, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="positions")

    @property
    def entry_value(self) -> float:
        return self.quantity * self.entry_price
