from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from support_chat.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(64), primary_key=True)
    customer_id = Column(String(64), index=True)
    status = Column(String(16), nullable=False, default="OPEN")  # OPEN, PENDING, RESOLVED, CLOSED
    mode = Column(String(16), nullable=False, default="AI")  # AI, HUMAN
    language = Column(String(8), nullable=False, default="en")
    assigned_agent_id = Column(Text)
    queue_position = Column(Integer)
    queued_at = Column(DateTime(timezone=True), index=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    messages = relationship("Message", back_populates="conversation", order_by="Message.position")
