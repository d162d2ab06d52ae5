"""
Account-owned grading content

Only the columns the account deletion cascade needs are modelled here.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..base import Base, utcnow


class Rubric(Base):
    __tablename__ = "rubrics"

    id = Column(Integer, primary_key=True, index=True)
    owner_email = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class CustomGPT(Base):
    __tablename__ = "custom_gpts"

    id = Column(Integer, primary_key=True, index=True)
    owner_email = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    files = relationship("CustomGPTFile", back_populates="custom_gpt")


class CustomGPTFile(Base):
    __tablename__ = "custom_gpt_files"

    id = Column(Integer, primary_key=True, index=True)
    custom_gpt_id = Column(Integer, ForeignKey("custom_gpts.id"), nullable=False, index=True)
    filename = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    custom_gpt = relationship("CustomGPT", back_populates="files")
