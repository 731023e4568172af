# models/concession_package.py
from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, func
from .base import Base

GIFT_PACKAGE_ID = "gifted-concessions"
GIFT_PACKAGE_NAME = "Gifted Concessions"


class ConcessionPackage(Base):
     """
     ConcessionPackage model - a sellable bundle of prepaid classes.
     """
     __tablename__ = "concession_packages"

     id = Column(String(100), primary_key=True)
     name = Column(String(255), nullable=False)
     number_of_classes = Column(Integer, nullable=False)
     price = Column(Numeric(10, 2), nullable=False)
     expiry_months = Column(Integer, nullable=False, default=6)
     is_active = Column(Boolean, default=True, nullable=False)
     display_order = Column(Integer, default=0, nullable=False)

     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     def __repr__(self):
          return f"<ConcessionPackage(id={self.id}, classes={self.number_of_classes}, price={self.price})>"


class CasualRate(Base):
     """
     CasualRate model - the price of a single class paid on the night.
     is_student distinguishes the casual-student rate from the standard one.
     """
     __tablename__ = "casual_rates"

     id = Column(String(100), primary_key=True)
     name = Column(String(255), nullable=False)
     price = Column(Numeric(10, 2), nullable=False)
     is_student = Column(Boolean, default=False, nullable=False)
     is_active = Column(Boolean, default=True, nullable=False)
     display_order = Column(Integer, default=0, nullable=False)

     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     def __repr__(self):
          return f"<CasualRate(id={self.id}, price={self.price}, student={self.is_student})>"
