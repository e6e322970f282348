"""
Permission feature module.

Role-based access control: a catalog of (resource, action) permissions,
ranked roles bundling them, resolution against live roles and token
claims, and the role matrix editor used to administer them.
"""
