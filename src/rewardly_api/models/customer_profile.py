from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, func

from rewardly_api.db.base import Base


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"

    id = Column(String(64), primary_key=True)
    display_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    push_token = Column(String, nullable=True)
    total_points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_scans = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class CustomerEarnToken(Base):
    """Persistent token behind a customer's personal earn QR."""

    __tablename__ = "customer_earn_tokens"

    token = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, unique=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}


__all__ = ["CustomerEarnToken", "CustomerProfile"]
