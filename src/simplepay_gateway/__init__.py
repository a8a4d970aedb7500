"""SimplePay payment gateway adapter for donation platforms."""

__version__ = "0.1.0"
