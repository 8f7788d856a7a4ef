"""Console output"""

from .console import ConsoleReportPresenter, format_indicator, money

__all__ = [
    'ConsoleReportPresenter',
    'format_indicator',
    'money',
]
