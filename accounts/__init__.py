"""Accounts app: staff users with a role (owner, admin, cashier, seller).

RolePermission can be reused by other apps importing as:
	from accounts.permissions import RolePermission
"""
