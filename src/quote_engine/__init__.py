"""
Quote Engine Package

Pricing core for the Kenlo sales calculator: turns a product/plan/add-on
selection into an itemized quote with tiered units, payment frequency terms,
Kombo bundle discounts and free premium services.
"""

__version__ = "1.0.0"
