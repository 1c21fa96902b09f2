from .customers import Customer
from .catalog import Service, Product, Staff
from .discounts import DiscountRule, CustomerDiscountUsage, discount_rule_services
from .sales import Sale, SaleServiceLine, SaleProductLine, SaleDiscount, SalePayment, SaleStaff, SaleAnnotation
from .inventory import StockMovement

__all__ = [
    'Customer',
    'Service', 'Product', 'Staff',
    'DiscountRule', 'CustomerDiscountUsage', 'discount_rule_services',
    'Sale', 'SaleServiceLine', 'SaleProductLine', 'SaleDiscount', 'SalePayment', 'SaleStaff', 'SaleAnnotation',
    'StockMovement',
]
