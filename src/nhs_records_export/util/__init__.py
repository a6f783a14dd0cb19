from .dates import parse_uk_date, to_filename_date
from .nhs_number import format_nhs_number

__all__ = ["parse_uk_date", "to_filename_date", "format_nhs_number"]
