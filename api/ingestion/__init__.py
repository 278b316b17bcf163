"""
Spreadsheet upload and transactional bulk import of certificate records.
"""
