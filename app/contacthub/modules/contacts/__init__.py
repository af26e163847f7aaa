"""
Contacts module.

Scope:
- Contacts CRUD with ownership rules (users edit their own, admins edit any, superadmins delete)
- Listing through the fallback chain (collaborative -> superadmin -> filtered -> table -> cache)
- Ad hoc filtering, CSV export, per-contact vCard download
- Pending-sync queue for creates that could not be written
"""
