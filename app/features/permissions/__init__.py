"""
Feature-based access control.

Every protected operation is a (module, feature) pair from the feature registry.
Access requires the organization's subscription plan to include the feature AND
the user's role (custom or built-in) to grant it; system roles bypass both.
Hierarchy helpers scope record visibility and approval authority.
"""
