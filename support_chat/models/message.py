from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from support_chat.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("conversation_id", "position", name="uq_messages_conversation_position"),)

    id = Column(String(64), primary_key=True)
    conversation_id = Column(String(64), ForeignKey("conversations.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String(16), nullable=False, default="TEXT")  # TEXT, IMAGE, FILE, ORDER_INFO, PRODUCT_LINK
    sender_type = Column(String(16), nullable=False)  # CUSTOMER, AGENT, SYSTEM, AI
    sender_id = Column(String(64))
    message_metadata = Column("metadata", JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    conversation = relationship("Conversation", back_populates="messages")
