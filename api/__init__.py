"""
FastAPI REST backend for the Grimoire book catalog.

This package provides:
- Account signup and login with signed bearer tokens
- Book CRUD restricted to the owner of each book
- Cover image compression and storage
- One rating per user and book, averaged per book
"""
