"""SQLAlchemy models package."""

from .appointment import AppointmentStatus, Appointment  # noqa: F401
from .catalog import Product, SalonService  # noqa: F401
from .client import Client, StaffMember  # noqa: F401
from .invoice import Invoice, InvoiceStatus, Payment, PaymentMethod, Refund  # noqa: F401
from .loyalty import LoyaltyAccount, LoyaltyTransaction  # noqa: F401
from .recurring_series import (  # noqa: F401
    RecurringSeries,
    RecurringSeriesAuditLog,
    RecurringSeriesException,
    SeriesAuditAction,
)
from .sale import DiscountType, Sale, SaleItem, SaleStatus  # noqa: F401
from .settings import SALON_SETTINGS_ID, SalonSettings  # noqa: F401
