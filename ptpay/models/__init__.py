from ptpay.models.audit import AuditLog
from ptpay.models.classes import GymClass
from ptpay.models.notification import Notification, NotificationType
from ptpay.models.payroll import CoachProfile, EmploymentType, Payslip, PayslipStatus
from ptpay.models.pt import PackageStatus, PTPackage, PTSession, PTSessionStatus, PTSessionType, VerificationState
from ptpay.models.user import User


__all__ = [
    "AuditLog",
    "GymClass",
    "Notification",
    "NotificationType",
    "CoachProfile",
    "EmploymentType",
    "Payslip",
    "PayslipStatus",
    "PackageStatus",
    "PTPackage",
    "PTSession",
    "PTSessionStatus",
    "PTSessionType",
    "VerificationState",
    "User",
]
