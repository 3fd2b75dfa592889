from salescrm.business.deals.models import Deal
from salescrm.business.payments.models import Payment, PaymentSequence
from salescrm.business.users.models import User
from salescrm.crm.models import Activity, Customer, Invoice, Lead

__all__ = [
    "Activity",
    "Customer",
    "Deal",
    "Invoice",
    "Lead",
    "Payment",
    "PaymentSequence",
    "User",
]
