"""
Customer profile model
Read by the notification layer to resolve contact details and audiences
"""

from sqlalchemy import Column, String, Integer, Index

from .base import Base, TimestampedModel, SerializableMixin


class Profile(Base, TimestampedModel, SerializableMixin):
    """Customer profile, keyed by the auth user id"""

    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), index=True)
    full_name = Column(String(200))
    phone = Column(String(20))
    role = Column(String(20), nullable=False, default="customer")
    reward_points = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_profiles_reward_points", "reward_points"),
    )

    @property
    def display_name(self) -> str:
        return self.full_name or "Customer"

    def __repr__(self):
        return f"<Profile {self.full_name or self.id}>"
