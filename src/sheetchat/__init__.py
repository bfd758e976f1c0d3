"""SheetChat - conversational analysis of uploaded spreadsheets."""

__version__ = "0.1.0"
