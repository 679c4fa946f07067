"""
                QR Menu Orders

Backend for table-side QR menu ordering: customers place orders from
their table, owners track them through the kitchen on a live dashboard.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
