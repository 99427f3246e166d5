from .catalog import Category, Brand, Unit, Location, Product, ProductStock, Customer, Supplier
from .ledger import BankAccount, ExpenseCategory, Transaction
from .invoices import Invoice, InvoiceItem
from .transfers import TransferDocument, TransferItem
from .accounts import Account
from .registers import CashRegister
from .auth import User
from .settings import AppSettings
from .carts import Cart, CartLine
from .documents import DocumentSequence

__all__ = [
    'Category', 'Brand', 'Unit', 'Location', 'Product', 'ProductStock', 'Customer', 'Supplier',
    'BankAccount', 'ExpenseCategory', 'Transaction',
    'Invoice', 'InvoiceItem',
    'TransferDocument', 'TransferItem',
    'Account',
    'CashRegister',
    'User',
    'AppSettings',
    'Cart', 'CartLine',
    'DocumentSequence',
]
