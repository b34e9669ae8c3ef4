"""
Order pricing and lifecycle engine.

Submodules are imported explicitly; the database models depend on
``storefront.services.orders.enums`` so this package keeps no eager imports.
"""
