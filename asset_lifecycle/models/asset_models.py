import enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class AssetStatus(str, enum.Enum):
    AVAILABLE = "Available"
    BORROWED = "Borrowed"


class BorrowingStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"


class BorrowingAction(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class AuditStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class AuditAction(str, enum.Enum):
    VERIFY = "VERIFY"
    REJECT = "REJECT"


class ServiceStatus(str, enum.Enum):
    PENDING = "Pending"
    TRANSIT = "Transit"
    COMPLETED = "Completed"


class IssueType(str, enum.Enum):
    HARDWARE = "HARDWARE"
    SOFTWARE = "SOFTWARE"
    NETWORK = "NETWORK"
    PERFORMANCE = "PERFORMANCE"
    OTHER = "OTHER"


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class Gender(str, enum.Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class Employee(Base):
    __tablename__ = "Employees"

    EmployeeID = Column(Integer, primary_key=True)
    Name = Column(String(60), nullable=False)
    Gender = Column(String(10))
    ContactNumber = Column(String(15))
    Address = Column(String(200))
    Email = Column(String(100), nullable=False, unique=True)
    PasswordHash = Column(String(256), nullable=False)
    PasswordSalt = Column(String(64), nullable=False)
    Role = Column(String(10), nullable=False, default=Role.USER.value)
    CreatedDate = Column(DateTime, server_default=func.now())

    Borrowings = relationship("AssetBorrowing", back_populates="Employee")
    Audits = relationship("AssetAudit", back_populates="Employee")
    ServiceRequests = relationship("ServiceRequest", back_populates="Employee")


class AssetCategory(Base):
    __tablename__ = "AssetCategories"

    CategoryID = Column(Integer, primary_key=True)
    CategoryName = Column(String(50), nullable=False, unique=True)
    CreatedDate = Column(DateTime, server_default=func.now())

    Assets = relationship("Asset", back_populates="Category")


class Asset(Base):
    __tablename__ = "Assets"

    AssetID = Column(Integer, primary_key=True)
    AssetName = Column(String(60), nullable=False)
    CategoryID = Column(Integer, ForeignKey("AssetCategories.CategoryID"), nullable=False)
    AssetModel = Column(String(50))
    ManufacturingDate = Column(Date)
    ExpiryDate = Column(Date)
    AssetValue = Column(Numeric(18, 2))
    Status = Column(String(20), nullable=False, default=AssetStatus.AVAILABLE.value)
    Description = Column(String(2048))
    ImagePath = Column(String(500))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Category = relationship("AssetCategory", back_populates="Assets")
    Borrowings = relationship("AssetBorrowing", back_populates="Asset")
    Audits = relationship("AssetAudit", back_populates="Asset")
    ServiceRequests = relationship("ServiceRequest", back_populates="Asset")


class AssetBorrowing(Base):
    __tablename__ = "AssetBorrowings"
    __table_args__ = (
        Index(
            "UX_AssetBorrowings_PendingPair",
            "EmployeeID",
            "AssetID",
            unique=True,
            sqlite_where=text("\"Status\" = 'PENDING'"),
            postgresql_where=text("\"Status\" = 'PENDING'"),
        ),
        Index(
            "UX_AssetBorrowings_ActiveAsset",
            "AssetID",
            unique=True,
            sqlite_where=text("\"Status\" = 'ACTIVE'"),
            postgresql_where=text("\"Status\" = 'ACTIVE'"),
        ),
    )

    BorrowingID = Column(Integer, primary_key=True)
    EmployeeID = Column(Integer, ForeignKey("Employees.EmployeeID"), nullable=False)
    AssetID = Column(Integer, ForeignKey("Assets.AssetID"), nullable=False)
    Status = Column(String(20), nullable=False, default=BorrowingStatus.PENDING.value)
    BorrowedAt = Column(DateTime)
    ReturnedAt = Column(DateTime)

    Employee = relationship("Employee", back_populates="Borrowings")
    Asset = relationship("Asset", back_populates="Borrowings")


class AssetAudit(Base):
    __tablename__ = "AssetAudits"

    AuditID = Column(Integer, primary_key=True)
    EmployeeID = Column(Integer, ForeignKey("Employees.EmployeeID"), nullable=False)
    AssetID = Column(Integer, ForeignKey("Assets.AssetID"), nullable=False)
    Status = Column(String(20), nullable=False, default=AuditStatus.PENDING.value)
    RequestedAt = Column(DateTime)
    UpdatedAt = Column(DateTime)

    Employee = relationship("Employee", back_populates="Audits")
    Asset = relationship("Asset", back_populates="Audits")


class ServiceRequest(Base):
    __tablename__ = "ServiceRequests"

    ServiceRequestID = Column(Integer, primary_key=True)
    EmployeeID = Column(Integer, ForeignKey("Employees.EmployeeID"), nullable=False)
    AssetID = Column(Integer, ForeignKey("Assets.AssetID"), nullable=False)
    IssueType = Column(String(20), nullable=False)
    Description = Column(String(1000), nullable=False)
    Status = Column(String(20), nullable=False, default=ServiceStatus.PENDING.value)
    RequestedAt = Column(DateTime)

    Employee = relationship("Employee", back_populates="ServiceRequests")
    Asset = relationship("Asset", back_populates="ServiceRequests")


class ActivityLog(Base):
    __tablename__ = "ActivityLogs"

    ActivityID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())
