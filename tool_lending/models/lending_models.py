from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from tool_lending.db.base import Base


class Tool(Base):
    __tablename__ = "Tools"

    ToolID = Column(Integer, primary_key=True)
    ToolName = Column(String(255), nullable=False)
    Description = Column(String(1000))
    Status = Column(String(20), nullable=False, default="available")
    WeeklyPrice = Column(Numeric(10, 2), nullable=False, default=0)
    MaintenanceImportance = Column(String(10), nullable=False, default="low")
    MaintenanceInterval = Column(Integer)
    LastMaintenanceDate = Column(Date)
    CreatedDate = Column(DateTime, default=datetime.now)
    UpdatedDate = Column(DateTime, default=datetime.now)

    Rentals = relationship("Rental", back_populates="Tool")
    Conditions = relationship(
        "ToolCondition",
        back_populates="Tool",
        cascade="all, delete-orphan",
        order_by=lambda: [ToolCondition.CreatedAt.desc(), ToolCondition.ConditionID.desc()],
    )


class Member(Base):
    __tablename__ = "Members"

    MemberID = Column(Integer, primary_key=True)
    FullName = Column(String(255), nullable=False)
    Email = Column(String(255))
    Role = Column(String(20), nullable=False, default="Member")
    MembershipExpiry = Column(Date, nullable=False)
    TotalDebt = Column(Numeric(10, 2), nullable=False, default=0)
    CreatedDate = Column(DateTime, default=datetime.now)

    Rentals = relationship("Rental", back_populates="Member")
    Transactions = relationship("LedgerTransaction", back_populates="Member")


class Rental(Base):
    __tablename__ = "Rentals"
    __table_args__ = {"sqlite_autoincrement": True}

    RentalID = Column(Integer, primary_key=True)
    RentalNumber = Column(String(50), unique=True)
    ToolID = Column(Integer, ForeignKey("Tools.ToolID"), nullable=False, index=True)
    MemberID = Column(Integer, ForeignKey("Members.MemberID"), nullable=False, index=True)
    StartDate = Column(Date, nullable=False)
    EndDate = Column(Date, nullable=False)
    Status = Column(String(20), nullable=False, default="pending")
    TotalPrice = Column(Numeric(10, 2), nullable=False)
    ActualReturnDate = Column(Date)
    ReturnComment = Column(String(1000))
    CreatedDate = Column(DateTime, default=datetime.now)
    UpdatedDate = Column(DateTime, default=datetime.now)

    Tool = relationship("Tool", back_populates="Rentals")
    Member = relationship("Member", back_populates="Rentals")
    History = relationship(
        "RentalHistory",
        back_populates="Rental",
        order_by=lambda: [RentalHistory.CreatedAt.desc(), RentalHistory.HistoryID.desc()],
    )
    Transactions = relationship("LedgerTransaction", back_populates="Rental")


class RentalHistory(Base):
    __tablename__ = "RentalHistory"

    HistoryID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False, index=True)
    ActorID = Column(Integer, ForeignKey("Members.MemberID"), nullable=False)
    Action = Column(String(20), nullable=False)
    Comment = Column(String(1000))
    CreatedAt = Column(DateTime, default=datetime.now)

    Rental = relationship("Rental", back_populates="History")
    Actor = relationship("Member")


class LedgerTransaction(Base):
    __tablename__ = "Transactions"

    TransactionID = Column(Integer, primary_key=True)
    MemberID = Column(Integer, ForeignKey("Members.MemberID"), nullable=False, index=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), index=True)
    Amount = Column(Numeric(10, 2), nullable=False)
    Type = Column(String(20), nullable=False)
    Status = Column(String(10), nullable=False, default="pending")
    WorkflowStep = Column(String(30))
    Method = Column(String(30))
    Description = Column(String(500))
    CreatedDate = Column(DateTime, default=datetime.now)
    UpdatedDate = Column(DateTime, default=datetime.now)

    Member = relationship("Member", back_populates="Transactions")
    Rental = relationship("Rental", back_populates="Transactions")


class ToolCondition(Base):
    __tablename__ = "ToolConditions"

    ConditionID = Column(Integer, primary_key=True)
    ToolID = Column(Integer, ForeignKey("Tools.ToolID"), nullable=False, index=True)
    ActorID = Column(Integer, ForeignKey("Members.MemberID"))
    StatusAtTime = Column(String(20), nullable=False)
    Comment = Column(String(1000))
    Cost = Column(Numeric(10, 2))
    CreatedAt = Column(DateTime, default=datetime.now)

    Tool = relationship("Tool", back_populates="Conditions")


class NotificationQueue(Base):
    __tablename__ = "NotificationQueue"

    NotificationID = Column(Integer, primary_key=True)
    RentalID = Column(Integer)
    NotificationType = Column(String(50), nullable=False)
    Payload = Column(String(2000))
    CreatedAt = Column(DateTime, default=datetime.now)
    SentAt = Column(DateTime)
