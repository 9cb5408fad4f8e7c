"""Shelfkeeper core package.

Modules:
- repository: generic async CRUD/pagination over SQLModel entities
- models: Account and Book tables
- errors: error taxonomy shared by every layer
- security / tokens: credential hashing and signed identity tokens
- objectstore: cover image storage (local directory or Supabase Storage)
- config / logging_config / database / migrations: ambient plumbing
"""
