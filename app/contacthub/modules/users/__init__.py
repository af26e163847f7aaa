"""
User management module (admin/superadmin).

Scope:
- Users CRUD, password reset, username suggestions
- Listing through the fallback chain (admin listing -> simple listing -> table -> cache)
"""
