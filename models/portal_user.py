# models/portal_user.py
from sqlalchemy import Column, String, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from .base import Base


class PortalUser(Base):
     """
     PortalUser model - links a student to their student-portal login.

     id is the stable uid issued by the external identity provider; the
     password itself never touches this database.
     """
     __tablename__ = "users"

     id = Column(String(128), primary_key=True)
     student_id = Column(String(64), ForeignKey("students.id"), nullable=False, unique=True)
     email = Column(String(255), nullable=False, index=True)
     role = Column(String(50), nullable=False, default="student")  # student, admin
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     # Relationships
     student = relationship("Student", back_populates="portal_user")

     def __repr__(self):
          return f"<PortalUser(id={self.id}, student_id={self.student_id}, email='{self.email}')>"
