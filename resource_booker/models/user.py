from sqlalchemy import Column, Integer, String
from resource_booker.db import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, nullable=True)
    # admin, staff, lecturer, student; feeds the priority bonus
    role = Column(String, nullable=False, default="student")
