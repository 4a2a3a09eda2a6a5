"""findbiz.nat.gov.tw company/business detail crawler."""

__version__ = "0.1.0"
