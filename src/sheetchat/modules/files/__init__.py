"""
SheetChat Files Module

- Upload (CSV/TSV/Excel) with type inference
- Listing and deletion
- Content-hash duplicate detection and deduplication
"""
