"""
Checkout Scanner - camera barcode scanning for point-of-sale checkout.
"""

__version__ = "1.0.0"
