from sqlalchemy import Column, Integer, String, Boolean, DateTime

from sqlalchemy.orm import declarative_base

Base = declarative_base()

# References between tables are plain string columns without foreign keys:
# users and items can be deleted while borrow records still point at them.
# `seq` keeps each collection in insertion order.


class User(Base):
    __tablename__ = "users"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)


class Item(Base):
    __tablename__ = "items"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    available = Column(Boolean, default=True, nullable=False)


class Borrow(Base):
    __tablename__ = "borrows"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, index=True)
    item_id = Column(String, nullable=False, index=True)
    borrower_id = Column(String, nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    request_date = Column(DateTime, nullable=False)
    proof_image = Column(String, nullable=True)
    return_proof_image = Column(String, nullable=True)
