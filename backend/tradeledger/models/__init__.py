from .inventory import Unit, UnitStatusChange, InventoryMovement
from .sales import Customer, Invoice, InvoiceLine, Payment, CustomerLedgerEntry
from .installments import InstallmentPlan, Installment
from .purchasing import Vendor, PurchaseOrder, PurchaseOrderLine, Bill, VendorPayment, VendorLedgerEntry
from .accounting import Account, JournalEntry
from .documents import DocumentSequence, AutomationLog

__all__ = [
    'Unit', 'UnitStatusChange', 'InventoryMovement',
    'Customer', 'Invoice', 'InvoiceLine', 'Payment', 'CustomerLedgerEntry',
    'InstallmentPlan', 'Installment',
    'Vendor', 'PurchaseOrder', 'PurchaseOrderLine', 'Bill', 'VendorPayment', 'VendorLedgerEntry',
    'Account', 'JournalEntry',
    'DocumentSequence', 'AutomationLog',
]
