from .catalog import Unit, Tax, Warehouse, Product, Variant, ProductVariant, ProductBatch, ComboComponent
from .inventory import StockLevel, StockMovement
from .documents import (
    Document, Sale, Purchase, Transfer, Adjustment, SaleReturn, PurchaseReturn, Production, Quotation,
    DocumentLine, DocumentSequence,
)
from .payments import (
    Payment, PaymentDetail, ChequeDetail, CardDetail, GiftCardDetail, PayPalDetail, BankTransferDetail,
    RewardPointDetail, InstallmentDetail,
)
from .customers import Customer, RewardPoint, GiftCard, InstallmentPlan, Installment
from .promotions import Discount, DiscountPlan, Coupon, CouponRedemption
from .registers import CashRegister, CashOutflow
from .events import EngineEvent

__all__ = [
    'Unit', 'Tax', 'Warehouse', 'Product', 'Variant', 'ProductVariant', 'ProductBatch', 'ComboComponent',
    'StockLevel', 'StockMovement',
    'Document', 'Sale', 'Purchase', 'Transfer', 'Adjustment', 'SaleReturn', 'PurchaseReturn',
    'Production', 'Quotation', 'DocumentLine', 'DocumentSequence',
    'Payment', 'PaymentDetail', 'ChequeDetail', 'CardDetail', 'GiftCardDetail', 'PayPalDetail',
    'BankTransferDetail', 'RewardPointDetail', 'InstallmentDetail',
    'Customer', 'RewardPoint', 'GiftCard', 'InstallmentPlan', 'Installment',
    'Discount', 'DiscountPlan', 'Coupon', 'CouponRedemption',
    'CashRegister', 'CashOutflow',
    'EngineEvent',
]
